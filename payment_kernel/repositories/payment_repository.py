"""
Module: payment_kernel.repositories.payment_repository
Responsibility: SQLAlchemy implementation of PaymentRepository, including
    the atomic idempotency-key mapping.
Architecture position: Kernel > Repositories.

Invariants enforced:
    - Idempotent creation: payment row and key row are written in one
      SAVEPOINT.  UNIQUE(tenant_id, key_value) makes the key insert an
      atomic insert-if-absent, so of two racing creators exactly one wins
      and the other receives DuplicatePaymentError.
    - An expired key row is deleted before the new one is inserted; an
      unexpired key is never replaced.
    - update_status only performs moves present in PAYMENT_WORKFLOW.

Failure modes:
    - DuplicatePaymentError when an unexpired key already exists.
    - InvalidPaymentStatusError / PaymentNotFoundError from update_status.
    - OptimisticLockError from save (see BaseRepository).
"""

from __future__ import annotations

from datetime import datetime
from typing import NoReturn
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.payment import PAYMENT_WORKFLOW, PaymentStatus, PaymentTransaction
from payment_kernel.exceptions import (
    DuplicatePaymentError,
    InvalidPaymentStatusError,
    PaymentNotFoundError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.models.payment import IdempotencyKeyModel, PaymentTransactionModel
from payment_kernel.repositories.base import BaseRepository

logger = get_logger("repositories.payment")


class SqlPaymentRepository(BaseRepository[PaymentTransactionModel, PaymentTransaction]):
    """
    Payment transactions and idempotency keys on SQLAlchemy.

    The clock decides which stored keys count as expired when a new key
    with the same value is written.
    """

    model = PaymentTransactionModel
    entity_name = "payment_transaction"

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def update_status(self, payment_id: str, status: PaymentStatus) -> None:
        row = self._load(payment_id)
        if row is None:
            raise PaymentNotFoundError(payment_id)
        current = PaymentStatus(row.status)
        status = PaymentStatus(status)
        if not PAYMENT_WORKFLOW.can_transition(current, status):
            raise InvalidPaymentStatusError(
                current_status=current,
                required_status=PAYMENT_WORKFLOW.sources_of(status),
                payment_id=payment_id,
            )
        row.status = status.value
        self._flush(payment_id)

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    def _key_row(self, key_value: str, tenant_id: str) -> IdempotencyKeyModel | None:
        stmt = select(IdempotencyKeyModel).where(
            IdempotencyKeyModel.tenant_id == tenant_id,
            IdempotencyKeyModel.key_value == key_value,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_idempotency_key(self, key: str, tenant_id: str, as_of: datetime) -> str | None:
        row = self._key_row(key, tenant_id)
        if row is None or row.is_expired(as_of):
            return None
        return row.payment_id

    def _purge_expired_key(self, key: IdempotencyKey) -> None:
        self.session.execute(
            delete(IdempotencyKeyModel).where(
                IdempotencyKeyModel.tenant_id == key.tenant_id,
                IdempotencyKeyModel.key_value == key.value,
                IdempotencyKeyModel.expires_at.is_not(None),
                IdempotencyKeyModel.expires_at <= self._clock.now(),
            )
        )

    def _add_key_row(self, key: IdempotencyKey, payment_id: str) -> None:
        self.session.add(
            IdempotencyKeyModel(
                id=f"idk_{uuid4().hex}",
                tenant_id=key.tenant_id,
                key_value=key.value,
                payment_id=payment_id,
                created_at=self._clock.now(),
                expires_at=key.expires_at,
            )
        )

    def _raise_duplicate(self, key: IdempotencyKey, exc: IntegrityError) -> NoReturn:
        existing = self.find_by_idempotency_key(key.value, key.tenant_id, self._clock.now())
        if existing is None:
            # Constraint other than the key mapping.
            raise exc
        logger.warning(
            "idempotency_key_conflict",
            extra={
                "tenant_id": key.tenant_id,
                "idempotency_key": key.value,
                "existing_payment_id": existing,
            },
        )
        raise DuplicatePaymentError(key.value, existing, key.tenant_id) from exc

    def store_idempotency_key(self, key: IdempotencyKey, payment_id: str) -> None:
        try:
            with self.session.begin_nested():
                self._purge_expired_key(key)
                self._add_key_row(key, payment_id)
                self.session.flush()
        except IntegrityError as exc:
            self._raise_duplicate(key, exc)

    def save_with_idempotency_key(
        self, payment: PaymentTransaction, key: IdempotencyKey,
    ) -> PaymentTransaction:
        try:
            with self.session.begin_nested():
                self._purge_expired_key(key)
                row = PaymentTransactionModel.from_dto(payment)
                self.session.add(row)
                self.session.flush()
                self._add_key_row(key, payment.id)
                self.session.flush()
        except IntegrityError as exc:
            self._raise_duplicate(key, exc)

        payment.version = row.version
        logger.debug(
            "payment_transaction_inserted",
            extra={"entity_id": payment.id, "idempotency_key": key.value},
        )
        return payment

    def find_by_status(self, status: PaymentStatus, tenant_id: str | None = None) -> list[PaymentTransaction]:
        stmt = select(PaymentTransactionModel).where(
            PaymentTransactionModel.status == PaymentStatus(status).value
        )
        if tenant_id is not None:
            stmt = stmt.where(PaymentTransactionModel.tenant_id == tenant_id)
        stmt = stmt.order_by(PaymentTransactionModel.created_at, PaymentTransactionModel.id)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]
