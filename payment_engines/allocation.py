"""
Module: payment_engines.allocation
Responsibility:
    Apply a payment amount to outstanding documents (invoices, bills)
    using one of the registered allocation strategies, and report exactly
    where every minor unit went.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import payment_kernel domain values, contracts and exceptions.

Invariants enforced:
    - Conservation: allocated + unallocated == payment amount, and the
      allocations add up to the allocated amount.  Checked after every
      strategy run, built-in or registered.
    - No document receives more than its outstanding amount and no
      allocation is negative.
    - Documents are never mutated and nothing is persisted; ``preview``
      and ``allocate`` are the same computation.
    - Validation runs before any strategy; an invalid request never
      produces a partial result.

Failure modes:
    - AllocationError with every validation message in ``errors`` and the
      first one as the exception message.
    - AllocationError when no strategy is registered for the method or a
      strategy breaks conservation.

Usage:
    from payment_engines.allocation import AllocationEngine, AllocationMethod, OutstandingDocument
    from payment_kernel.domain.values import Money

    engine = AllocationEngine()
    result = engine.allocate(
        Money.of("100.00", "MYR"),
        [
            OutstandingDocument("doc1", Money.of("50.00", "MYR"), date(2024, 1, 1)),
            OutstandingDocument("doc2", Money.of("75.00", "MYR"), date(2024, 1, 15)),
        ],
        AllocationMethod.FIFO,
    )
    # result.allocations == {"doc1": 50.00 MYR, "doc2": 50.00 MYR}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date

from payment_engines.allocation_strategies import (
    AllocationMethod,
    AllocationStrategy,
    ManualAllocations,
    default_strategies,
    manual_allocation_errors,
)
from payment_engines.tracer import traced_engine
from payment_kernel.domain.contracts import AllocatableDocument
from payment_kernel.domain.values import Money
from payment_kernel.exceptions import AllocationError
from payment_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

__all__ = [
    "AllocationEngine",
    "AllocationMethod",
    "AllocationResult",
    "OutstandingDocument",
]


@dataclass(frozen=True)
class OutstandingDocument:
    """
    A read-only open document satisfying AllocatableDocument.

    Guarantees:
        - ``outstanding_amount`` is not negative.
        - ``original_amount`` defaults to the outstanding amount and shares
          its currency.
    """

    id: str
    outstanding_amount: Money
    document_date: date
    due_date: date | None = None
    original_amount: Money | None = None

    def __post_init__(self) -> None:
        if self.outstanding_amount.is_negative:
            raise ValueError(f"Outstanding amount of {self.id} cannot be negative")
        if self.original_amount is None:
            object.__setattr__(self, "original_amount", self.outstanding_amount)
        elif self.original_amount.currency != self.outstanding_amount.currency:
            raise ValueError(f"Original and outstanding amounts of {self.id} differ in currency")

    @property
    def currency(self) -> str:
        return self.outstanding_amount.currency.code


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of one allocation run.

    Contract:
        ``allocations`` maps document id to the positive amount applied,
        in the order the strategy applied them.
    Guarantees:
        - ``allocated_amount + unallocated_amount == total_amount``.
        - ``sum(allocations.values()) == allocated_amount``.
    Non-goals:
        - Does not persist anything; callers record the result.
    """

    method: AllocationMethod
    total_amount: Money
    allocated_amount: Money
    unallocated_amount: Money
    allocations: Mapping[str, Money] = field(default_factory=dict)

    @property
    def is_fully_allocated(self) -> bool:
        return self.unallocated_amount.is_zero

    @property
    def allocation_count(self) -> int:
        return len(self.allocations)

    def allocation_for(self, document_id: str) -> Money:
        return self.allocations.get(document_id, Money.zero(self.total_amount.currency))


class AllocationEngine:
    """
    Strategy registry plus validation and conservation checks.

    Contract:
        Built with the seven default strategies unless ``strategies`` is
        given.  ``register_strategy`` replaces the strategy for its method.
    Guarantees:
        - Deterministic: the same inputs give the same allocations.
        - Pure: no clock, no I/O, documents untouched.
    Non-goals:
        - Does not choose a method; callers select it.
    """

    def __init__(self, strategies: Iterable[AllocationStrategy] | None = None):
        self._strategies: dict[AllocationMethod, AllocationStrategy] = {}
        for strategy in default_strategies() if strategies is None else strategies:
            self.register_strategy(strategy)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_strategy(self, strategy: AllocationStrategy) -> None:
        method = AllocationMethod(strategy.method)
        replaced = method in self._strategies
        self._strategies[method] = strategy
        logger.debug(
            "allocation_strategy_registered",
            extra={
                "method": method.value,
                "strategy": type(strategy).__name__,
                "replaced": replaced,
            },
        )

    def get_strategy(self, method: AllocationMethod | str) -> AllocationStrategy:
        method = AllocationMethod(method)
        strategy = self._strategies.get(method)
        if strategy is None:
            raise AllocationError(f"No allocation strategy registered for method {method.value}")
        return strategy

    def available_methods(self) -> list[AllocationMethod]:
        return [m for m in AllocationMethod if m in self._strategies]

    @staticmethod
    def requires_user_input(method: AllocationMethod | str) -> bool:
        return AllocationMethod(method).requires_user_input

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_allocation(
        self,
        payment_amount: Money,
        documents: Sequence[AllocatableDocument],
        method: AllocationMethod | str,
        manual_allocations: ManualAllocations | None = None,
    ) -> list[str]:
        """Every reason the request cannot be allocated; empty when valid."""
        method = AllocationMethod(method)
        errors: list[str] = []

        if not documents:
            errors.append("No documents provided for allocation")

        currencies = {d.currency for d in documents}
        if len(currencies) > 1:
            errors.append("All documents must have the same currency")

        if documents and not any(d.outstanding_amount.is_positive for d in documents):
            errors.append("All documents are already fully paid")

        if method is AllocationMethod.MANUAL and manual_allocations is None:
            errors.append("Manual allocation method requires explicit allocation specifications")

        if len(currencies) == 1 and payment_amount.currency.code not in currencies:
            errors.append(
                f"Payment currency {payment_amount.currency.code} does not match "
                f"document currency {next(iter(currencies))}"
            )

        if payment_amount.is_negative:
            errors.append("Payment amount cannot be negative")

        for doc in documents:
            if doc.outstanding_amount.is_negative:
                errors.append(f"Document {doc.id} has a negative outstanding amount")

        if (
            not errors
            and method is AllocationMethod.MANUAL
            and manual_allocations is not None
        ):
            errors.extend(manual_allocation_errors(payment_amount, documents, manual_allocations))

        return errors

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    @traced_engine(
        "allocation",
        "1.0",
        fingerprint_fields=("payment_amount", "documents", "method", "manual_allocations"),
    )
    def allocate(
        self,
        payment_amount: Money,
        documents: Sequence[AllocatableDocument],
        method: AllocationMethod | str,
        manual_allocations: ManualAllocations | None = None,
    ) -> AllocationResult:
        """
        Allocate ``payment_amount`` over ``documents``.

        Raises:
            AllocationError: The request failed validation, no strategy is
                registered for ``method``, or the strategy broke conservation.
        """
        method = AllocationMethod(method)
        logger.info("allocation_started", extra={
            "amount": str(payment_amount),
            "method": method.value,
            "document_count": len(documents),
        })

        errors = self.validate_allocation(payment_amount, documents, method, manual_allocations)
        if errors:
            logger.warning("allocation_rejected", extra={
                "method": method.value,
                "errors": errors,
            })
            raise AllocationError(errors[0], errors)

        strategy = self.get_strategy(method)
        allocations = dict(strategy.allocate(payment_amount, documents, manual_allocations))

        allocated = Money.sum(allocations.values(), payment_amount.currency)
        result = AllocationResult(
            method=method,
            total_amount=payment_amount,
            allocated_amount=allocated,
            unallocated_amount=payment_amount - allocated,
            allocations=allocations,
        )
        self._verify(result, documents, strategy)

        logger.info("allocation_completed", extra={
            "method": method.value,
            "allocated": str(result.allocated_amount),
            "unallocated": str(result.unallocated_amount),
            "allocation_count": result.allocation_count,
        })
        return result

    def preview(
        self,
        payment_amount: Money,
        documents: Sequence[AllocatableDocument],
        method: AllocationMethod | str,
        manual_allocations: ManualAllocations | None = None,
    ) -> AllocationResult:
        """Same computation as ``allocate``; named for callers that will not record it."""
        return self.allocate(payment_amount, documents, method, manual_allocations)

    def _verify(
        self,
        result: AllocationResult,
        documents: Sequence[AllocatableDocument],
        strategy: AllocationStrategy,
    ) -> None:
        by_id = {d.id: d for d in documents}
        problems: list[str] = []

        for doc_id, amount in result.allocations.items():
            doc = by_id.get(doc_id)
            if doc is None:
                problems.append(f"allocated to unknown document {doc_id}")
            elif amount.is_negative:
                problems.append(f"negative allocation to {doc_id}")
            elif amount > doc.outstanding_amount:
                problems.append(f"allocation to {doc_id} exceeds its outstanding balance")

        if result.allocated_amount > result.total_amount:
            problems.append("allocations exceed the payment amount")
        if result.allocated_amount + result.unallocated_amount != result.total_amount:
            problems.append("allocated and unallocated amounts do not add up to the payment")

        if problems:
            name = type(strategy).__name__
            logger.error("allocation_conservation_violated", extra={
                "strategy": name,
                "problems": problems,
            })
            raise AllocationError(f"Allocation strategy {name} {problems[0]}", problems)
