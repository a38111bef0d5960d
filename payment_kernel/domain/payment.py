"""
Payment transaction entity and its lifecycle.

Responsibility:
    ``PaymentTransaction`` is a single inbound or outbound movement of
    funds.  Its status changes only through the mutators on the entity,
    and every mutator consults ``PAYMENT_WORKFLOW`` before touching state.

Architecture position:
    Kernel > Domain -- pure, no I/O.  The current time is passed in by the
    caller (managers read it from an injected Clock).

Invariants enforced:
    - Status is read-only from outside; the only legal moves are those in
      PAYMENT_WORKFLOW.
    - A rejected mutation leaves every field unchanged (all checks run
      before the first assignment).
    - COMPLETED requires a settled amount and an external reference.
    - A reversal never exceeds the original amount and is only possible
      for method types that support it.

Failure modes:
    - InvalidPaymentStatusError on an illegal transition.
    - PaymentValidationError on missing completion/failure details or an
      out-of-range reversal amount.
    - InvalidPaymentMethodError when reversing a CASH or CHEQUE payment.
    - CurrencyMismatchError / CurrencyConversionError on currency errors.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from payment_kernel.domain.values import ExchangeRateSnapshot, Money
from payment_kernel.domain.workflow import Transition, Workflow
from payment_kernel.exceptions import (
    CurrencyConversionError,
    CurrencyMismatchError,
    InvalidPaymentMethodError,
    InvalidPaymentStatusError,
    PaymentValidationError,
)
from payment_kernel.logging_config import get_logger

logger = get_logger("domain.payment")


class PaymentStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REVERSED = "reversed"


class PaymentDirection(str, Enum):
    INBOUND = "inbound"  # Funds received from a payer
    OUTBOUND = "outbound"  # Funds sent to a payee


class PaymentMethodType(str, Enum):
    CARD = "card"
    BANK_ACCOUNT = "bank_account"
    BANK_TRANSFER = "bank_transfer"
    EWALLET = "ewallet"
    VIRTUAL_ACCOUNT = "virtual_account"
    CASH = "cash"
    CHEQUE = "cheque"

    @property
    def supports_reversal(self) -> bool:
        """Physical instruments cannot be pulled back through a processor."""
        return self not in (PaymentMethodType.CASH, PaymentMethodType.CHEQUE)


PAYMENT_WORKFLOW = Workflow(
    name="payment_transaction",
    description="Payment transaction lifecycle",
    initial_state=PaymentStatus.PENDING,
    states=tuple(PaymentStatus),
    transitions=(
        Transition(PaymentStatus.PENDING, PaymentStatus.PROCESSING, action="mark_as_processing"),
        Transition(PaymentStatus.FAILED, PaymentStatus.PROCESSING, action="mark_as_processing"),
        Transition(PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, action="mark_as_completed"),
        Transition(PaymentStatus.PROCESSING, PaymentStatus.FAILED, action="mark_as_failed"),
        Transition(PaymentStatus.DRAFT, PaymentStatus.CANCELLED, action="mark_as_cancelled"),
        Transition(PaymentStatus.PENDING, PaymentStatus.CANCELLED, action="mark_as_cancelled"),
        Transition(PaymentStatus.COMPLETED, PaymentStatus.REVERSED, action="mark_as_reversed"),
    ),
    terminal_states=(PaymentStatus.CANCELLED, PaymentStatus.REVERSED),
)

# COMPLETED stays reversible and FAILED stays retryable, but neither is
# an outcome that a caller should keep waiting on.
TERMINAL_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REVERSED,
})


def generate_payment_id() -> str:
    return f"pay_{uuid4().hex}"


class PaymentTransaction:
    """
    A payment moving through PENDING -> PROCESSING -> COMPLETED/FAILED.

    Contract:
        Built through ``create`` for new payments; the constructor also
        rehydrates persisted payments (including their status and version).
        Status is exposed read-only.

    Guarantees:
        - ``attempt_count`` increments on every move into PROCESSING.
        - ``settlement_currency`` defaults to the payment currency and only
          changes through ``capture_exchange_rate``.
    """

    def __init__(
        self,
        *,
        id: str,
        tenant_id: str,
        reference: str,
        direction: PaymentDirection,
        amount: Money,
        method_type: PaymentMethodType,
        created_at: datetime,
        status: PaymentStatus = PaymentStatus.PENDING,
        payer_id: str | None = None,
        payee_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        processed_at: datetime | None = None,
        settled_at: datetime | None = None,
        settled_amount: Money | None = None,
        external_reference: str | None = None,
        failure_code: str | None = None,
        failure_message: str | None = None,
        failed_at: datetime | None = None,
        cancelled_at: datetime | None = None,
        attempt_count: int = 0,
        executor_name: str | None = None,
        settlement_currency: str | None = None,
        exchange_rate: ExchangeRateSnapshot | None = None,
        reversed_amount: Money | None = None,
        reversed_at: datetime | None = None,
        version: int = 0,
    ):
        self.id = id
        self.tenant_id = tenant_id
        self.reference = reference
        self.direction = PaymentDirection(direction)
        self.amount = amount
        self.method_type = PaymentMethodType(method_type)
        self.created_at = created_at
        self._status = PaymentStatus(status)
        self.payer_id = payer_id
        self.payee_id = payee_id
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.idempotency_key = idempotency_key
        self.processed_at = processed_at
        self.settled_at = settled_at
        self.settled_amount = settled_amount
        self.external_reference = external_reference
        self.failure_code = failure_code
        self.failure_message = failure_message
        self.failed_at = failed_at
        self.cancelled_at = cancelled_at
        self.attempt_count = attempt_count
        self.executor_name = executor_name
        self.settlement_currency = settlement_currency or amount.currency.code
        self.exchange_rate = exchange_rate
        self.reversed_amount = reversed_amount
        self.reversed_at = reversed_at
        self.version = version

    @classmethod
    def create(
        cls,
        *,
        tenant_id: str,
        reference: str,
        direction: PaymentDirection,
        amount: Money,
        method_type: PaymentMethodType,
        now: datetime,
        payer_id: str | None = None,
        payee_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        draft: bool = False,
    ) -> PaymentTransaction:
        """New payment in PENDING, or DRAFT when ``draft`` is set."""
        return cls(
            id=generate_payment_id(),
            tenant_id=tenant_id,
            reference=reference,
            direction=direction,
            amount=amount,
            method_type=method_type,
            created_at=now,
            status=PaymentStatus.DRAFT if draft else PaymentStatus.PENDING,
            payer_id=payer_id,
            payee_id=payee_id,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def status(self) -> PaymentStatus:
        return self._status

    def can_transition_to(self, status: PaymentStatus) -> bool:
        return PAYMENT_WORKFLOW.can_transition(self._status, status)

    def can_be_cancelled(self) -> bool:
        return self._status in (PaymentStatus.DRAFT, PaymentStatus.PENDING)

    def can_be_reversed(self) -> bool:
        return self._status == PaymentStatus.COMPLETED

    def is_terminal(self) -> bool:
        return self._status in TERMINAL_PAYMENT_STATUSES

    def is_successful(self) -> bool:
        return self._status == PaymentStatus.COMPLETED

    def is_failed(self) -> bool:
        return self._status == PaymentStatus.FAILED

    def is_cross_currency(self) -> bool:
        return self.settlement_currency != self.amount.currency.code

    @property
    def is_partially_reversed(self) -> bool:
        return self.reversed_amount is not None and self.reversed_amount < self.amount

    @property
    def expected_settlement_amount(self) -> Money:
        """Amount expected in the settlement currency."""
        if self.exchange_rate is None:
            return self.amount
        return self.exchange_rate.convert(self.amount)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_transition(self, target: PaymentStatus, message: str | None = None) -> None:
        if not PAYMENT_WORKFLOW.can_transition(self._status, target):
            raise InvalidPaymentStatusError(
                current_status=self._status,
                required_status=PAYMENT_WORKFLOW.sources_of(target),
                message=message,
                payment_id=self.id,
            )

    def _move_to(self, target: PaymentStatus) -> None:
        previous = self._status
        self._status = target
        logger.debug(
            "payment_status_changed",
            extra={
                "payment_id": self.id,
                "from_status": previous.value,
                "to_status": target.value,
            },
        )

    def mark_as_processing(self, now: datetime, executor_name: str | None = None) -> None:
        """Start an execution attempt (from PENDING, or from FAILED on retry)."""
        self._require_transition(PaymentStatus.PROCESSING)
        self._move_to(PaymentStatus.PROCESSING)
        self.attempt_count += 1
        self.processed_at = now
        self.executor_name = executor_name
        self.failure_code = None
        self.failure_message = None
        self.failed_at = None

    def mark_as_completed(
        self,
        settled_amount: Money,
        external_reference: str,
        now: datetime,
    ) -> None:
        self._require_transition(PaymentStatus.COMPLETED)
        if not external_reference or not str(external_reference).strip():
            raise PaymentValidationError(
                "Completed payments require an external transaction reference",
                field="external_reference",
            )
        if settled_amount is None:
            raise PaymentValidationError(
                "Completed payments require a settled amount", field="settled_amount"
            )
        if settled_amount.currency.code != self.settlement_currency:
            raise CurrencyMismatchError(self.settlement_currency, settled_amount.currency.code)
        if settled_amount.is_negative:
            raise PaymentValidationError(
                "Settled amount cannot be negative", field="settled_amount"
            )
        self._move_to(PaymentStatus.COMPLETED)
        self.settled_amount = settled_amount
        self.external_reference = str(external_reference)
        self.settled_at = now

    def mark_as_failed(self, code: str, message: str, now: datetime) -> None:
        self._require_transition(PaymentStatus.FAILED)
        if not code:
            raise PaymentValidationError("Failure code is required", field="failure_code")
        if not message:
            raise PaymentValidationError("Failure message is required", field="failure_message")
        self._move_to(PaymentStatus.FAILED)
        self.failure_code = code
        self.failure_message = message
        self.failed_at = now

    def mark_as_cancelled(
        self,
        reason: str,
        now: datetime,
        cancelled_by: str | None = None,
    ) -> None:
        self._require_transition(
            PaymentStatus.CANCELLED,
            message=f"Payment in status {self._status.value} cannot be cancelled",
        )
        self._move_to(PaymentStatus.CANCELLED)
        self.cancelled_at = now
        self.metadata["cancellation_reason"] = reason
        if cancelled_by is not None:
            self.metadata["cancelled_by"] = cancelled_by

    def check_reversal(self, amount: Money | None = None) -> Money:
        """Validate a reversal request and return the amount to reverse.

        Runs every reversal guard without changing state, so callers can
        validate before asking an executor to refund.
        """
        if not self.can_be_reversed():
            raise InvalidPaymentStatusError(
                current_status=self._status,
                required_status=PaymentStatus.COMPLETED,
                message="Only completed payments can be reversed",
                payment_id=self.id,
            )
        if not self.method_type.supports_reversal:
            raise InvalidPaymentMethodError(
                self.method_type,
                f"Payment method {self.method_type.value} does not support reversals",
            )
        amount = self.amount if amount is None else amount
        if amount.currency != self.amount.currency:
            raise CurrencyMismatchError(self.amount.currency.code, amount.currency.code)
        if not amount.is_positive:
            raise PaymentValidationError("Reversal amount must be positive", field="amount")
        if amount > self.amount:
            raise PaymentValidationError(
                "Reversal amount cannot exceed original payment amount", field="amount"
            )
        return amount

    def mark_as_reversed(
        self,
        now: datetime,
        amount: Money | None = None,
        reason: str | None = None,
        external_reference: str | None = None,
    ) -> None:
        amount = self.check_reversal(amount)
        self._move_to(PaymentStatus.REVERSED)
        self.reversed_amount = amount
        self.reversed_at = now
        if reason is not None:
            self.metadata["reversal_reason"] = reason
        if external_reference is not None:
            self.metadata["reversal_transaction_id"] = external_reference

    # ------------------------------------------------------------------
    # Other mutators
    # ------------------------------------------------------------------

    def capture_exchange_rate(self, snapshot: ExchangeRateSnapshot) -> None:
        """Settle in ``snapshot.target_currency`` at the captured rate."""
        if self._status not in (PaymentStatus.DRAFT, PaymentStatus.PENDING, PaymentStatus.FAILED):
            raise InvalidPaymentStatusError(
                current_status=self._status,
                required_status=(PaymentStatus.DRAFT, PaymentStatus.PENDING, PaymentStatus.FAILED),
                message="Exchange rate can only be captured before execution",
                payment_id=self.id,
            )
        if snapshot.source_currency != self.amount.currency.code:
            raise CurrencyConversionError(
                f"Exchange rate source {snapshot.source_currency} does not match "
                f"payment currency {self.amount.currency.code}",
                snapshot.source_currency,
                snapshot.target_currency,
            )
        self.exchange_rate = snapshot
        self.settlement_currency = snapshot.target_currency

    def add_metadata(self, values: dict[str, Any]) -> None:
        self.metadata.update(values)

    def __repr__(self) -> str:
        return (
            f"PaymentTransaction(id={self.id!r}, status={self._status.value}, "
            f"amount={self.amount})"
        )
