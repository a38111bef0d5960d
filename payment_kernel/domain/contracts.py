"""
Collaborator contracts for the payment kernel.

The kernel owns lifecycle rules; everything that touches the outside
world sits behind one of these Protocols:

    PaymentRepository               payment transactions + idempotency keys
    DisbursementRepository          disbursements
    DisbursementScheduleRepository  disbursement schedules
    SettlementBatchRepository       settlement batches
    PaymentExecutor                 the rail that actually moves funds
    EventDispatcher                 delivery of domain events
    AllocatableDocument             invoices/bills the allocation engine settles

SQLAlchemy implementations of the repositories live in
``payment_kernel.repositories``; executors and dispatchers are supplied
by the host application (``payment_kernel.services.event_dispatcher``
ships an in-process dispatcher).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol, runtime_checkable

from payment_kernel.domain.disbursement import Disbursement, DisbursementStatus
from payment_kernel.domain.events import DomainEvent
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.payment import PaymentStatus, PaymentTransaction
from payment_kernel.domain.schedule import DisbursementSchedule
from payment_kernel.domain.settlement import SettlementBatch
from payment_kernel.domain.values import Money


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome reported by a PaymentExecutor.

    Guarantees:
        - A successful result carries an external reference.
        - A failed result carries a failure code and message.
    """

    success: bool
    settled_amount: Money | None = None
    external_reference: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None

    @classmethod
    def succeeded(cls, external_reference: str, settled_amount: Money | None = None) -> ExecutionResult:
        return cls(success=True, settled_amount=settled_amount, external_reference=external_reference)

    @classmethod
    def failed(cls, code: str | None, message: str | None) -> ExecutionResult:
        return cls(
            success=False,
            failure_code=code or "UNKNOWN",
            failure_message=message or "Unknown error",
        )


class PaymentRepository(Protocol):
    """Persistence for payment transactions and their idempotency keys."""

    def find_by_id(self, payment_id: str) -> PaymentTransaction | None: ...

    def save(self, payment: PaymentTransaction) -> PaymentTransaction: ...

    def update_status(self, payment_id: str, status: PaymentStatus) -> None: ...

    def find_by_idempotency_key(self, key: str, tenant_id: str, as_of: datetime) -> str | None:
        """Payment id mapped to an unexpired key for this tenant, or None."""
        ...

    def store_idempotency_key(self, key: IdempotencyKey, payment_id: str) -> None:
        """Insert-if-absent; raises DuplicatePaymentError when an unexpired key exists."""
        ...

    def save_with_idempotency_key(self, payment: PaymentTransaction, key: IdempotencyKey) -> PaymentTransaction:
        """Persist ``payment`` and its key atomically."""
        ...


class DisbursementRepository(Protocol):
    """Persistence for disbursements."""

    def find_by_id(self, disbursement_id: str) -> Disbursement | None: ...

    def save(self, disbursement: Disbursement) -> Disbursement: ...

    def update_status(self, disbursement_id: str, status: DisbursementStatus) -> None: ...

    def find_by_status(
        self, status: DisbursementStatus, tenant_id: str | None = None,
    ) -> list[Disbursement]: ...

    def find_pending_approval(self, tenant_id: str) -> list[Disbursement]: ...

    def find_ready_for_processing(self, tenant_id: str, as_of: datetime) -> list[Disbursement]: ...

    def completed_usage_since(self, tenant_id: str, currency: str, since: datetime) -> tuple[Money, int]:
        """Total amount and count of disbursements completed at or after ``since``."""
        ...


class DisbursementScheduleRepository(Protocol):
    """Persistence for disbursement schedules, keyed by disbursement id."""

    def find_by_disbursement_id(self, disbursement_id: str) -> DisbursementSchedule | None: ...

    def save(self, disbursement_id: str, tenant_id: str, schedule: DisbursementSchedule) -> None: ...

    def remove(self, disbursement_id: str) -> bool: ...

    def find_due(
        self, tenant_id: str, as_of: datetime, limit: int = 100,
    ) -> list[tuple[str, DisbursementSchedule]]: ...

    def find_upcoming(
        self, tenant_id: str, start: datetime, end: datetime, limit: int = 50,
    ) -> list[tuple[str, DisbursementSchedule]]: ...


class SettlementBatchRepository(Protocol):
    """Persistence for settlement batches."""

    def find_by_id(self, batch_id: str) -> SettlementBatch | None: ...

    def save(self, batch: SettlementBatch) -> SettlementBatch: ...

    def find_open_batch_for_payment(self, payment_id: str) -> SettlementBatch | None: ...


class PaymentExecutor(Protocol):
    """
    Funds-movement rail (card processor, bank API, wallet provider).

    Implementations report failures through ExecutionResult; a raised
    exception is also captured by the managers and recorded as a failure.
    """

    def execute(self, transaction: PaymentTransaction) -> ExecutionResult: ...

    def refund(self, transaction_id: str, amount: Money, reason: str | None = None) -> ExecutionResult: ...


class EventDispatcher(Protocol):
    """Fire-and-forget delivery of domain events."""

    def dispatch(self, event: DomainEvent) -> None: ...


@runtime_checkable
class AllocatableDocument(Protocol):
    """An open document (invoice, bill) that a payment can be applied to."""

    @property
    def id(self) -> str: ...

    @property
    def outstanding_amount(self) -> Money: ...

    @property
    def original_amount(self) -> Money: ...

    @property
    def document_date(self) -> date: ...

    @property
    def due_date(self) -> date | None: ...

    @property
    def currency(self) -> str: ...

