"""
Property-based tests for allocation conservation.

For every automatic method and any set of same-currency documents:
- allocations never exceed a document's outstanding balance
- the allocated amount is min(payment, total outstanding)
- allocated + unallocated == payment
"""

from datetime import date, timedelta

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from payment_engines.allocation import AllocationEngine, AllocationMethod, OutstandingDocument
from payment_kernel.domain.values import Money

ENGINE = AllocationEngine()
BASE_DATE = date(2024, 1, 1)

AUTOMATIC_METHODS = [m for m in AllocationMethod if not m.requires_user_input]

document_specs = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=10_000_000),
        st.integers(min_value=0, max_value=365),
        st.one_of(st.none(), st.integers(min_value=0, max_value=365)),
    ),
    min_size=1,
    max_size=12,
)


def build_documents(specs, currency: str) -> list[OutstandingDocument]:
    return [
        OutstandingDocument(
            id=f"d{index:03d}",
            outstanding_amount=Money.from_minor_units(minor, currency),
            document_date=BASE_DATE + timedelta(days=doc_offset),
            due_date=None if due_offset is None else BASE_DATE + timedelta(days=due_offset),
        )
        for index, (minor, doc_offset, due_offset) in enumerate(specs)
    ]


class TestAllocationConservation:

    @given(
        specs=document_specs,
        payment_minor=st.integers(min_value=0, max_value=100_000_000),
        method=st.sampled_from(AUTOMATIC_METHODS),
        currency=st.sampled_from(["USD", "MYR", "JPY"]),
    )
    @settings(max_examples=200, deadline=None)
    def test_conservation(self, specs, payment_minor, method, currency):
        assume(any(minor > 0 for minor, _, _ in specs))
        documents = build_documents(specs, currency)
        payment = Money.from_minor_units(payment_minor, currency)

        result = ENGINE.allocate(payment, documents, method)

        by_id = {d.id: d for d in documents}
        for doc_id, amount in result.allocations.items():
            assert amount.is_positive
            assert amount <= by_id[doc_id].outstanding_amount

        total_outstanding = sum(d.outstanding_amount.minor_units for d in documents)
        assert result.allocated_amount.minor_units == min(payment_minor, total_outstanding)
        assert result.allocated_amount + result.unallocated_amount == payment
        assert Money.sum(result.allocations.values(), currency) == result.allocated_amount

    @given(
        specs=document_specs,
        payment_minor=st.integers(min_value=0, max_value=100_000_000),
        method=st.sampled_from(AUTOMATIC_METHODS),
    )
    @settings(max_examples=100, deadline=None)
    def test_deterministic(self, specs, payment_minor, method):
        assume(any(minor > 0 for minor, _, _ in specs))
        documents = build_documents(specs, "USD")
        payment = Money.from_minor_units(payment_minor, "USD")

        first = ENGINE.allocate(payment, documents, method)
        second = ENGINE.allocate(payment, list(reversed(documents)), method)
        assert dict(first.allocations) == dict(second.allocations)
