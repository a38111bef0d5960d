"""
Domain events emitted by the payment managers.

Each event is an immutable record of something that already happened.
Managers hand them to an ``EventDispatcher`` after the corresponding state
has been saved; delivery is fire-and-forget from the manager's view.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar
from uuid import uuid4

from payment_kernel.domain.values import Money


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Common envelope: unique id, tenant and the time the change happened."""

    event_type: ClassVar[str] = "domain_event"

    tenant_id: str
    occurred_at: datetime
    event_id: str = field(default_factory=lambda: f"evt_{uuid4().hex}")

    def to_log_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"event_type": self.event_type}
        for f in fields(self):
            value = getattr(self, f.name)
            payload[f.name] = str(value) if isinstance(value, Money) else value
        return payload


# Payment transaction events


@dataclass(frozen=True, kw_only=True)
class PaymentCreatedEvent(DomainEvent):
    event_type: ClassVar[str] = "payment.created"

    payment_id: str
    amount: Money
    direction: str
    reference: str
    method_type: str
    idempotency_key: str | None = None


@dataclass(frozen=True, kw_only=True)
class PaymentProcessingEvent(DomainEvent):
    event_type: ClassVar[str] = "payment.processing"

    payment_id: str
    attempt: int
    executor_name: str | None = None


@dataclass(frozen=True, kw_only=True)
class PaymentCompletedEvent(DomainEvent):
    event_type: ClassVar[str] = "payment.completed"

    payment_id: str
    amount: Money
    settled_amount: Money
    external_reference: str


@dataclass(frozen=True, kw_only=True)
class PaymentFailedEvent(DomainEvent):
    event_type: ClassVar[str] = "payment.failed"

    payment_id: str
    failure_code: str
    failure_message: str
    attempt: int


@dataclass(frozen=True, kw_only=True)
class PaymentCancelledEvent(DomainEvent):
    event_type: ClassVar[str] = "payment.cancelled"

    payment_id: str
    reason: str
    cancelled_by: str | None = None


@dataclass(frozen=True, kw_only=True)
class PaymentReversedEvent(DomainEvent):
    event_type: ClassVar[str] = "payment.reversed"

    payment_id: str
    reversed_amount: Money
    reason: str | None
    external_reference: str | None


# Disbursement events


@dataclass(frozen=True, kw_only=True)
class DisbursementCreatedEvent(DomainEvent):
    event_type: ClassVar[str] = "disbursement.created"

    disbursement_id: str
    reference_number: str
    amount: Money
    created_by: str


@dataclass(frozen=True, kw_only=True)
class DisbursementApprovedEvent(DomainEvent):
    event_type: ClassVar[str] = "disbursement.approved"

    disbursement_id: str
    approved_by: str
    comment: str | None = None


@dataclass(frozen=True, kw_only=True)
class DisbursementRejectedEvent(DomainEvent):
    event_type: ClassVar[str] = "disbursement.rejected"

    disbursement_id: str
    rejected_by: str
    reason: str


@dataclass(frozen=True, kw_only=True)
class DisbursementCompletedEvent(DomainEvent):
    event_type: ClassVar[str] = "disbursement.completed"

    disbursement_id: str
    amount: Money
    payment_transaction_id: str
    external_reference: str | None = None


@dataclass(frozen=True, kw_only=True)
class DisbursementFailedEvent(DomainEvent):
    event_type: ClassVar[str] = "disbursement.failed"

    disbursement_id: str
    failure_code: str
    failure_message: str


@dataclass(frozen=True, kw_only=True)
class DisbursementCancelledEvent(DomainEvent):
    event_type: ClassVar[str] = "disbursement.cancelled"

    disbursement_id: str
    cancelled_by: str
    reason: str


# Settlement batch events


@dataclass(frozen=True, kw_only=True)
class SettlementBatchOpenedEvent(DomainEvent):
    event_type: ClassVar[str] = "settlement_batch.opened"

    batch_id: str
    processor_id: str
    currency: str


@dataclass(frozen=True, kw_only=True)
class SettlementBatchClosedEvent(DomainEvent):
    event_type: ClassVar[str] = "settlement_batch.closed"

    batch_id: str
    payment_count: int
    gross_amount: Money
    net_amount: Money


@dataclass(frozen=True, kw_only=True)
class SettlementBatchReconciledEvent(DomainEvent):
    event_type: ClassVar[str] = "settlement_batch.reconciled"

    batch_id: str
    expected_amount: Money | None
    actual_amount: Money
    discrepancy: Money | None


@dataclass(frozen=True, kw_only=True)
class SettlementBatchDisputedEvent(DomainEvent):
    event_type: ClassVar[str] = "settlement_batch.disputed"

    batch_id: str
    reason: str
