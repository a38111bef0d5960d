"""
Settlement batch -- completed payments grouped for one processor payout.

A batch is OPEN while payments are added, CLOSED once the expected payout
(gross minus fees) is fixed, and RECONCILED when the processor's actual
payout is recorded.  A closed batch whose payout is contested moves to
DISPUTED and can still be reconciled later.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from payment_kernel.domain.currency import CurrencyRegistry
from payment_kernel.domain.values import Money
from payment_kernel.domain.workflow import Transition, Workflow
from payment_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidSettlementBatchStatusError,
    PaymentValidationError,
)


class SettlementBatchStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    RECONCILED = "reconciled"
    DISPUTED = "disputed"


SETTLEMENT_BATCH_WORKFLOW = Workflow(
    name="settlement_batch",
    description="Processor settlement batch lifecycle",
    initial_state=SettlementBatchStatus.OPEN,
    states=tuple(SettlementBatchStatus),
    transitions=(
        Transition(SettlementBatchStatus.OPEN, SettlementBatchStatus.CLOSED, action="close"),
        Transition(SettlementBatchStatus.CLOSED, SettlementBatchStatus.RECONCILED, action="reconcile"),
        Transition(SettlementBatchStatus.CLOSED, SettlementBatchStatus.DISPUTED, action="mark_disputed"),
        Transition(SettlementBatchStatus.DISPUTED, SettlementBatchStatus.RECONCILED, action="reconcile"),
    ),
    terminal_states=(SettlementBatchStatus.RECONCILED,),
)


@dataclass(frozen=True)
class SettlementEntry:
    """One payment's contribution to a batch."""

    payment_id: str
    amount: Money
    fee: Money


def generate_batch_id() -> str:
    return f"stl_{uuid4().hex}"


class SettlementBatch:
    """
    Group of completed payments settled together by a processor.

    Guarantees:
        - Every entry shares the batch currency.
        - A payment appears at most once in a batch.
        - Entries change only while the batch is OPEN.
    """

    def __init__(
        self,
        *,
        id: str,
        tenant_id: str,
        processor_id: str,
        currency: str,
        opened_at: datetime,
        status: SettlementBatchStatus = SettlementBatchStatus.OPEN,
        entries: list[SettlementEntry] | None = None,
        expected_settlement_amount: Money | None = None,
        actual_settlement_amount: Money | None = None,
        processor_batch_reference: str | None = None,
        closed_at: datetime | None = None,
        reconciled_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
        version: int = 0,
    ):
        self.id = id
        self.tenant_id = tenant_id
        self.processor_id = processor_id
        self.currency = CurrencyRegistry.validate(currency)
        self.opened_at = opened_at
        self._status = SettlementBatchStatus(status)
        self.entries: list[SettlementEntry] = list(entries or [])
        self.expected_settlement_amount = expected_settlement_amount
        self.actual_settlement_amount = actual_settlement_amount
        self.processor_batch_reference = processor_batch_reference
        self.closed_at = closed_at
        self.reconciled_at = reconciled_at
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.version = version

    @classmethod
    def open(cls, tenant_id: str, processor_id: str, currency: str, now: datetime) -> SettlementBatch:
        if not processor_id:
            raise PaymentValidationError("Processor is required", field="processor_id")
        return cls(
            id=generate_batch_id(),
            tenant_id=tenant_id,
            processor_id=processor_id,
            currency=currency,
            opened_at=now,
        )

    @property
    def status(self) -> SettlementBatchStatus:
        return self._status

    @property
    def payment_ids(self) -> list[str]:
        return [e.payment_id for e in self.entries]

    @property
    def payment_count(self) -> int:
        return len(self.entries)

    @property
    def gross_amount(self) -> Money:
        return Money.sum((e.amount for e in self.entries), self.currency)

    # Alias used by reporting callers
    total_amount = gross_amount

    @property
    def total_fees(self) -> Money:
        return Money.sum((e.fee for e in self.entries), self.currency)

    @property
    def net_amount(self) -> Money:
        return self.gross_amount - self.total_fees

    @property
    def discrepancy_amount(self) -> Money | None:
        if self.expected_settlement_amount is None or self.actual_settlement_amount is None:
            return None
        return self.actual_settlement_amount - self.expected_settlement_amount

    def has_discrepancy(self) -> bool:
        discrepancy = self.discrepancy_amount
        return discrepancy is not None and not discrepancy.is_zero

    def contains(self, payment_id: str) -> bool:
        return any(e.payment_id == payment_id for e in self.entries)

    def _require_currency(self, money: Money) -> None:
        if money.currency.code != self.currency:
            raise CurrencyMismatchError(self.currency, money.currency.code)

    def _require_open(self) -> None:
        if self._status != SettlementBatchStatus.OPEN:
            raise InvalidSettlementBatchStatusError(
                self._status,
                SettlementBatchStatus.OPEN,
                "Cannot modify a closed settlement batch",
            )

    def _require_transition(self, target: SettlementBatchStatus) -> None:
        if not SETTLEMENT_BATCH_WORKFLOW.can_transition(self._status, target):
            raise InvalidSettlementBatchStatusError(
                self._status,
                SETTLEMENT_BATCH_WORKFLOW.sources_of(target),
            )

    def add_payment(self, payment_id: str, amount: Money, fee: Money | None = None) -> bool:
        """Add a payment; returns False when it is already in the batch."""
        self._require_open()
        fee = fee if fee is not None else Money.zero(self.currency)
        self._require_currency(amount)
        self._require_currency(fee)
        if fee.is_negative:
            raise PaymentValidationError("Settlement fee cannot be negative", field="fee")
        if self.contains(payment_id):
            return False
        self.entries.append(SettlementEntry(payment_id, amount, fee))
        return True

    def remove_payment(self, payment_id: str) -> bool:
        """Remove a payment; returns False when it was not in the batch."""
        self._require_open()
        remaining = [e for e in self.entries if e.payment_id != payment_id]
        removed = len(remaining) != len(self.entries)
        self.entries = remaining
        return removed

    def close(self, now: datetime) -> None:
        self._require_transition(SettlementBatchStatus.CLOSED)
        self._status = SettlementBatchStatus.CLOSED
        self.closed_at = now
        self.expected_settlement_amount = self.net_amount

    def reconcile(self, actual_amount: Money, now: datetime, processor_reference: str | None = None) -> None:
        self._require_transition(SettlementBatchStatus.RECONCILED)
        self._require_currency(actual_amount)
        self._status = SettlementBatchStatus.RECONCILED
        self.actual_settlement_amount = actual_amount
        self.reconciled_at = now
        if processor_reference is not None:
            self.processor_batch_reference = processor_reference

    def mark_disputed(self, reason: str, now: datetime) -> None:
        self._require_transition(SettlementBatchStatus.DISPUTED)
        if not reason:
            raise PaymentValidationError("Dispute reason is required", field="reason")
        self._status = SettlementBatchStatus.DISPUTED
        self.metadata["dispute_reason"] = reason
        self.metadata["disputed_at"] = now.isoformat()
