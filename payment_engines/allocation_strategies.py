"""
Module: payment_engines.allocation_strategies
Responsibility:
    The seven built-in ways of applying a payment to open documents.
    Each strategy maps (payment amount, documents) to an ordered
    ``{document_id: Money}`` of positive allocations.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by
    payment_engines.allocation.AllocationEngine.

Invariants enforced:
    - Only documents with a positive outstanding amount receive money.
    - No document receives more than its outstanding amount, and the
      allocations never add up to more than the payment.
    - Orderings are total: every sort key ends with the document id, so
      equal dates or balances always resolve the same way.
    - Proportional shares are computed in integer minor units with exact
      rational arithmetic and rounded half-up; the rounding remainder is
      absorbed by the largest outstanding balance (id ascending on ties),
      spilling to the next-largest when a document is at its cap.

Failure modes:
    - AllocationError from the manual strategy when the caller's map
      references unknown documents, is negative, exceeds a balance or
      exceeds the payment, or uses another currency.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import ClassVar, Protocol

from payment_kernel.domain.contracts import AllocatableDocument
from payment_kernel.domain.values import Money, round_half_up
from payment_kernel.exceptions import AllocationError

ManualAllocations = Mapping[str, Money | Decimal | int | str]


class AllocationMethod(str, Enum):
    """How a payment is spread over open documents."""

    FIFO = "fifo"  # Oldest document date first
    LIFO = "lifo"  # Newest document date first
    OLDEST_FIRST = "oldest_first"  # Earliest due date first
    LARGEST_FIRST = "largest_first"
    SMALLEST_FIRST = "smallest_first"
    PROPORTIONAL = "proportional"
    MANUAL = "manual"  # Caller supplies the amounts

    @property
    def requires_user_input(self) -> bool:
        return self is AllocationMethod.MANUAL


class AllocationStrategy(Protocol):
    """Allocation contract; ``method`` is the registry key."""

    method: AllocationMethod

    def allocate(
        self,
        payment_amount: Money,
        documents: Sequence[AllocatableDocument],
        manual_allocations: ManualAllocations | None = None,
    ) -> dict[str, Money]: ...


def eligible_documents(documents: Sequence[AllocatableDocument]) -> list[AllocatableDocument]:
    return [d for d in documents if d.outstanding_amount.is_positive]


# ---------------------------------------------------------------------------
# Sequential strategies
# ---------------------------------------------------------------------------


class SequentialStrategy(ABC):
    """
    Walk the documents in a fixed order, paying each as far as possible.

    Subclasses define ``order``.  Each document receives
    ``min(remaining payment, outstanding)`` until the payment or the
    documents run out.
    """

    method: ClassVar[AllocationMethod]

    @abstractmethod
    def order(self, documents: list[AllocatableDocument]) -> list[AllocatableDocument]:
        """Documents in the sequence they are paid."""

    def allocate(
        self,
        payment_amount: Money,
        documents: Sequence[AllocatableDocument],
        manual_allocations: ManualAllocations | None = None,
    ) -> dict[str, Money]:
        remaining = payment_amount
        allocations: dict[str, Money] = {}
        for doc in self.order(eligible_documents(documents)):
            if not remaining.is_positive:
                break
            applied = min(remaining, doc.outstanding_amount)
            allocations[doc.id] = applied
            remaining = remaining - applied
        return allocations


class FifoStrategy(SequentialStrategy):
    method = AllocationMethod.FIFO

    def order(self, documents):
        return sorted(documents, key=lambda d: (d.document_date, d.id))


class LifoStrategy(SequentialStrategy):
    method = AllocationMethod.LIFO

    def order(self, documents):
        # Stable sort: id ascending survives the descending date pass.
        by_id = sorted(documents, key=lambda d: d.id)
        return sorted(by_id, key=lambda d: d.document_date, reverse=True)


class OldestFirstStrategy(SequentialStrategy):
    """Earliest due date first; documents without a due date go last."""

    method = AllocationMethod.OLDEST_FIRST

    def order(self, documents):
        return sorted(
            documents,
            key=lambda d: (
                d.due_date is None,
                d.due_date or d.document_date,
                d.document_date,
                d.id,
            ),
        )


class LargestFirstStrategy(SequentialStrategy):
    method = AllocationMethod.LARGEST_FIRST

    def order(self, documents):
        return sorted(documents, key=lambda d: (-d.outstanding_amount.minor_units, d.id))


class SmallestFirstStrategy(SequentialStrategy):
    method = AllocationMethod.SMALLEST_FIRST

    def order(self, documents):
        return sorted(documents, key=lambda d: (d.outstanding_amount.minor_units, d.id))


# ---------------------------------------------------------------------------
# Proportional
# ---------------------------------------------------------------------------


class ProportionalStrategy:
    """
    Spread ``min(payment, total outstanding)`` in proportion to balances.

    share_i = target * outstanding_i / total, rounded half-up to the minor
    unit.  The difference between the target and the rounded shares is
    then moved onto documents in largest-balance order.
    """

    method = AllocationMethod.PROPORTIONAL

    def allocate(
        self,
        payment_amount: Money,
        documents: Sequence[AllocatableDocument],
        manual_allocations: ManualAllocations | None = None,
    ) -> dict[str, Money]:
        eligible = eligible_documents(documents)
        if not eligible or not payment_amount.is_positive:
            return {}

        outstanding = {d.id: d.outstanding_amount.minor_units for d in eligible}
        total = sum(outstanding.values())
        target = min(payment_amount.minor_units, total)

        shares = {
            doc_id: round_half_up(Fraction(target * balance, total))
            for doc_id, balance in outstanding.items()
        }

        remainder = target - sum(shares.values())
        for doc_id in sorted(outstanding, key=lambda i: (-outstanding[i], i)):
            if remainder == 0:
                break
            if remainder > 0:
                step = min(outstanding[doc_id] - shares[doc_id], remainder)
            else:
                step = -min(shares[doc_id], -remainder)
            shares[doc_id] += step
            remainder -= step

        currency = payment_amount.currency
        return {
            doc_id: Money.from_minor_units(minor, currency)
            for doc_id, minor in shares.items()
            if minor > 0
        }


# ---------------------------------------------------------------------------
# Manual
# ---------------------------------------------------------------------------


def _as_money(value: Money | Decimal | int | str, currency) -> Money:
    return value if isinstance(value, Money) else Money.of(value, currency)


def manual_allocation_errors(
    payment_amount: Money,
    documents: Sequence[AllocatableDocument],
    manual_allocations: ManualAllocations,
) -> list[str]:
    """Every problem with a caller-supplied allocation map, in a stable order."""
    errors: list[str] = []
    by_id = {d.id: d for d in documents}
    total_minor = 0

    for doc_id, raw in manual_allocations.items():
        doc = by_id.get(doc_id)
        if doc is None:
            errors.append(f"Unknown document in manual allocation: {doc_id}")
            continue
        amount = _as_money(raw, payment_amount.currency)
        if amount.currency != payment_amount.currency:
            errors.append(
                f"Manual allocation for {doc_id} is in {amount.currency.code}, "
                f"expected {payment_amount.currency.code}"
            )
            continue
        if amount.is_negative:
            errors.append(f"Manual allocation for {doc_id} cannot be negative")
            continue
        if amount.currency == doc.outstanding_amount.currency and amount > doc.outstanding_amount:
            errors.append(
                f"Manual allocation for {doc_id} of {amount} exceeds "
                f"outstanding balance {doc.outstanding_amount}"
            )
        total_minor += amount.minor_units

    if total_minor > payment_amount.minor_units:
        total = Money.from_minor_units(total_minor, payment_amount.currency)
        errors.append(f"Manual allocations total {total} exceeds payment amount {payment_amount}")
    return errors


class ManualStrategy:
    """Caller-specified amounts, validated but never adjusted."""

    method = AllocationMethod.MANUAL

    def allocate(
        self,
        payment_amount: Money,
        documents: Sequence[AllocatableDocument],
        manual_allocations: ManualAllocations | None = None,
    ) -> dict[str, Money]:
        if manual_allocations is None:
            raise AllocationError(
                "Manual allocation method requires explicit allocation specifications"
            )
        errors = manual_allocation_errors(payment_amount, documents, manual_allocations)
        if errors:
            raise AllocationError(errors[0], errors)

        allocations: dict[str, Money] = {}
        for doc_id, raw in manual_allocations.items():
            amount = _as_money(raw, payment_amount.currency)
            if amount.is_positive:
                allocations[doc_id] = amount
        return allocations


def default_strategies() -> list[AllocationStrategy]:
    return [
        FifoStrategy(),
        LifoStrategy(),
        OldestFirstStrategy(),
        LargestFirstStrategy(),
        SmallestFirstStrategy(),
        ProportionalStrategy(),
        ManualStrategy(),
    ]
