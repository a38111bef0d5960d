"""
Module: payment_kernel.models.payment
Responsibility: ORM persistence for payment transactions and idempotency keys.

Architecture position: Kernel > Models.  May import from db/base.py and the
    domain entities it maps.

Invariants enforced:
    - One unexpired idempotency key per (tenant_id, key_value): UNIQUE
      constraint makes key insertion an atomic insert-if-absent.
    - Optimistic locking: ``version`` is the mapper's version_id_col, so a
      concurrent writer's UPDATE matches zero rows and raises StaleDataError.
    - Status values limited by a CHECK constraint.

Failure modes:
    - IntegrityError on a duplicate (tenant_id, key_value).
    - StaleDataError when the row version moved underneath a writer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.payment import PaymentStatus, PaymentTransaction
from payment_kernel.domain.values import ExchangeRateSnapshot, Money


def _money(minor_units: int | None, currency: str) -> Money | None:
    if minor_units is None:
        return None
    return Money.from_minor_units(minor_units, currency)


def _minor(money: Money | None) -> int | None:
    return None if money is None else money.minor_units


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in PaymentStatus)


class PaymentTransactionModel(Base):
    """Persistent payment transaction."""

    __tablename__ = "payment_transactions"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_payment_transactions_valid_status",
        ),
        CheckConstraint("amount_minor > 0", name="ck_payment_transactions_positive_amount"),
        Index("ix_payment_transactions_tenant_status", "tenant_id", "status"),
        Index("ix_payment_transactions_reference", "tenant_id", "reference"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    method_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payee_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    settlement_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    settled_amount_minor: Mapped[int | None] = mapped_column(nullable=True)
    reversed_amount_minor: Mapped[int | None] = mapped_column(nullable=True)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    failure_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    failure_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(nullable=False, default=0)
    executor_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    exchange_rate: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> PaymentTransaction:
        return PaymentTransaction(
            id=self.id,
            tenant_id=self.tenant_id,
            reference=self.reference,
            direction=self.direction,
            amount=Money.from_minor_units(self.amount_minor, self.currency),
            method_type=self.method_type,
            created_at=self.created_at,
            status=PaymentStatus(self.status),
            payer_id=self.payer_id,
            payee_id=self.payee_id,
            metadata=dict(self.details or {}),
            idempotency_key=self.idempotency_key,
            processed_at=self.processed_at,
            settled_at=self.settled_at,
            settled_amount=_money(self.settled_amount_minor, self.settlement_currency),
            external_reference=self.external_reference,
            failure_code=self.failure_code,
            failure_message=self.failure_message,
            failed_at=self.failed_at,
            cancelled_at=self.cancelled_at,
            attempt_count=self.attempt_count,
            executor_name=self.executor_name,
            settlement_currency=self.settlement_currency,
            exchange_rate=(
                ExchangeRateSnapshot.from_dict(self.exchange_rate)
                if self.exchange_rate else None
            ),
            reversed_amount=_money(self.reversed_amount_minor, self.currency),
            reversed_at=self.reversed_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: PaymentTransaction) -> PaymentTransactionModel:
        model = cls(id=dto.id)
        model.update_from_dto(dto)
        return model

    def update_from_dto(self, dto: PaymentTransaction) -> None:
        """Copy every mutable field of ``dto`` onto this row."""
        self.tenant_id = dto.tenant_id
        self.reference = dto.reference
        self.direction = dto.direction.value
        self.amount_minor = dto.amount.minor_units
        self.currency = dto.amount.currency.code
        self.method_type = dto.method_type.value
        self.status = dto.status.value
        self.payer_id = dto.payer_id
        self.payee_id = dto.payee_id
        self.details = dict(dto.metadata)
        self.idempotency_key = dto.idempotency_key
        self.created_at = dto.created_at
        self.processed_at = dto.processed_at
        self.settled_at = dto.settled_at
        self.failed_at = dto.failed_at
        self.cancelled_at = dto.cancelled_at
        self.reversed_at = dto.reversed_at
        self.settlement_currency = dto.settlement_currency
        self.settled_amount_minor = _minor(dto.settled_amount)
        self.reversed_amount_minor = _minor(dto.reversed_amount)
        self.external_reference = dto.external_reference
        self.failure_code = dto.failure_code
        self.failure_message = dto.failure_message
        self.attempt_count = dto.attempt_count
        self.executor_name = dto.executor_name
        self.exchange_rate = dto.exchange_rate.to_dict() if dto.exchange_rate else None

    def __repr__(self) -> str:
        return f"<PaymentTransactionModel {self.id} {self.status}>"


class IdempotencyKeyModel(Base):
    """Tenant-scoped mapping from an idempotency key to the payment it created."""

    __tablename__ = "payment_idempotency_keys"

    __table_args__ = (
        UniqueConstraint("tenant_id", "key_value", name="uq_payment_idempotency_tenant_key"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    key_value: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("payment_transactions.id"), nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> IdempotencyKey:
        return IdempotencyKey(
            value=self.key_value,
            tenant_id=self.tenant_id,
            expires_at=self.expires_at,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self) -> str:
        return f"<IdempotencyKeyModel {self.tenant_id}/{self.key_value} -> {self.payment_id}>"
