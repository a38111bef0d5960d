"""Tests for the disbursement, disbursement schedule and settlement batch repositories."""

from datetime import timedelta

import pytest

from conftest import OTHER_TENANT_ID, TEST_TENANT_ID
from payment_kernel.domain.disbursement import Disbursement, DisbursementStatus, RecipientInfo
from payment_kernel.domain.payment import PaymentMethodType
from payment_kernel.domain.schedule import DisbursementSchedule, RecurrenceFrequency
from payment_kernel.domain.settlement import SettlementBatch, SettlementBatchStatus
from payment_kernel.domain.values import Money
from payment_kernel.exceptions import InvalidDisbursementStatusError, OptimisticLockError
from payment_kernel.repositories import (
    SqlDisbursementRepository,
    SqlDisbursementScheduleRepository,
    SqlSettlementBatchRepository,
)

RECIPIENT = RecipientInfo(name="Jane Doe", email="jane@example.com")


def new_disbursement(clock, amount="100.00", currency="USD", tenant_id=TEST_TENANT_ID):
    return Disbursement.create(
        tenant_id=tenant_id,
        amount=Money.of(amount, currency),
        recipient=RECIPIENT,
        method_type=PaymentMethodType.EWALLET,
        created_by="clerk-1",
        now=clock.now(),
    )


def completed(disbursement, clock):
    disbursement.submit_for_approval()
    disbursement.approve("mgr-1", clock.now())
    disbursement.mark_as_processing(clock.now())
    disbursement.mark_as_completed("pay_x", clock.now())
    return disbursement


@pytest.fixture
def disbursements(session):
    return SqlDisbursementRepository(session)


@pytest.fixture
def schedules(session):
    return SqlDisbursementScheduleRepository(session)


@pytest.fixture
def batches(session):
    return SqlSettlementBatchRepository(session)


class TestDisbursementRepository:

    def test_round_trip(self, disbursements, clock):
        disbursement = new_disbursement(clock)
        disbursement.link_source_documents(["bill-9"])
        disbursements.save(disbursement)

        loaded = disbursements.find_by_id(disbursement.id)
        assert loaded.recipient == RECIPIENT
        assert loaded.reference_number == disbursement.reference_number
        assert loaded.source_document_ids == ["bill-9"]
        assert loaded.status == DisbursementStatus.DRAFT

    def test_optimistic_lock(self, disbursements, clock):
        disbursement = new_disbursement(clock)
        disbursements.save(disbursement)
        first = disbursements.find_by_id(disbursement.id)
        second = disbursements.find_by_id(disbursement.id)

        first.submit_for_approval()
        disbursements.save(first)
        second.cancel("clerk-1", "changed mind", clock.now())

        with pytest.raises(OptimisticLockError):
            disbursements.save(second)

    def test_update_status(self, disbursements, clock):
        disbursement = new_disbursement(clock)
        disbursements.save(disbursement)

        disbursements.update_status(disbursement.id, DisbursementStatus.PENDING_APPROVAL)
        assert disbursements.find_by_id(disbursement.id).status == DisbursementStatus.PENDING_APPROVAL

        with pytest.raises(InvalidDisbursementStatusError):
            disbursements.update_status(disbursement.id, DisbursementStatus.COMPLETED)

    def test_find_ready_for_processing(self, disbursements, clock):
        immediate = new_disbursement(clock)
        scheduled = new_disbursement(clock)
        scheduled.schedule(clock.now() + timedelta(days=2), clock.now())
        for d in (immediate, scheduled):
            d.submit_for_approval()
            d.approve("mgr-1", clock.now())
            disbursements.save(d)
        disbursements.save(new_disbursement(clock))

        ready = disbursements.find_ready_for_processing(TEST_TENANT_ID, clock.now())
        assert [d.id for d in ready] == [immediate.id]

        later = clock.now() + timedelta(days=2)
        ready = disbursements.find_ready_for_processing(TEST_TENANT_ID, later)
        assert {d.id for d in ready} == {immediate.id, scheduled.id}

    def test_completed_usage_since(self, disbursements, clock):
        disbursements.save(completed(new_disbursement(clock, "100.00"), clock))
        disbursements.save(completed(new_disbursement(clock, "250.50"), clock))
        disbursements.save(completed(new_disbursement(clock, "999.00", currency="EUR"), clock))
        disbursements.save(completed(new_disbursement(clock, "999.00", tenant_id=OTHER_TENANT_ID), clock))
        disbursements.save(new_disbursement(clock, "999.00"))

        usage, count = disbursements.completed_usage_since(TEST_TENANT_ID, "USD", clock.now())
        assert usage == Money.of("350.50", "USD")
        assert count == 2

        usage, count = disbursements.completed_usage_since(
            TEST_TENANT_ID, "USD", clock.now() + timedelta(seconds=1),
        )
        assert usage == Money.zero("USD")
        assert count == 0


class TestSettlementBatchRepository:

    def test_entries_round_trip_in_order(self, batches, clock):
        batch = SettlementBatch.open(TEST_TENANT_ID, "stripe", "USD", clock.now())
        batch.add_payment("pay_b", Money.of("20.00", "USD"), Money.of("0.50", "USD"))
        batch.add_payment("pay_a", Money.of("10.00", "USD"))
        batches.save(batch)

        loaded = batches.find_by_id(batch.id)
        assert loaded.payment_ids == ["pay_b", "pay_a"]
        assert loaded.total_fees == Money.of("0.50", "USD")
        assert loaded.gross_amount == Money.of("30.00", "USD")

    def test_removed_entry_is_deleted(self, batches, clock):
        batch = SettlementBatch.open(TEST_TENANT_ID, "stripe", "USD", clock.now())
        batch.add_payment("pay_a", Money.of("10.00", "USD"))
        batch.add_payment("pay_b", Money.of("20.00", "USD"))
        batches.save(batch)

        loaded = batches.find_by_id(batch.id)
        loaded.remove_payment("pay_a")
        loaded.add_payment("pay_c", Money.of("5.00", "USD"))
        batches.save(loaded)

        assert batches.find_by_id(batch.id).payment_ids == ["pay_b", "pay_c"]
        assert batches.find_open_batch_for_payment("pay_a") is None

    def test_find_open_batch_for_payment(self, batches, clock):
        batch = SettlementBatch.open(TEST_TENANT_ID, "stripe", "USD", clock.now())
        batch.add_payment("pay_a", Money.of("10.00", "USD"))
        batches.save(batch)

        assert batches.find_open_batch_for_payment("pay_a").id == batch.id

        batch = batches.find_by_id(batch.id)
        batch.close(clock.now())
        batches.save(batch)
        assert batches.find_open_batch_for_payment("pay_a") is None

    def test_reconciled_amounts_persist(self, batches, clock):
        batch = SettlementBatch.open(TEST_TENANT_ID, "stripe", "USD", clock.now())
        batch.add_payment("pay_a", Money.of("10.00", "USD"), Money.of("0.30", "USD"))
        batch.close(clock.now())
        batch.reconcile(Money.of("9.70", "USD"), clock.now(), "po_1")
        batches.save(batch)

        loaded = batches.find_by_id(batch.id)
        assert loaded.status == SettlementBatchStatus.RECONCILED
        assert loaded.expected_settlement_amount == Money.of("9.70", "USD")
        assert loaded.actual_settlement_amount == Money.of("9.70", "USD")
        assert not loaded.has_discrepancy()

    def test_find_open_batches(self, batches, clock):
        stripe = SettlementBatch.open(TEST_TENANT_ID, "stripe", "USD", clock.now())
        adyen = SettlementBatch.open(TEST_TENANT_ID, "adyen", "USD", clock.now())
        other = SettlementBatch.open(OTHER_TENANT_ID, "stripe", "USD", clock.now())
        for batch in (stripe, adyen, other):
            batches.save(batch)

        assert {b.id for b in batches.find_open_batches(TEST_TENANT_ID)} == {stripe.id, adyen.id}
        assert [b.id for b in batches.find_open_batches(TEST_TENANT_ID, "stripe")] == [stripe.id]


class TestDisbursementScheduleRepository:

    def stored(self, disbursements, schedules, clock, schedule, tenant_id=TEST_TENANT_ID):
        disbursement = new_disbursement(clock, tenant_id=tenant_id)
        disbursements.save(disbursement)
        schedules.save(disbursement.id, tenant_id, schedule)
        return disbursement.id

    def test_round_trip_and_replace(self, disbursements, schedules, clock):
        now = clock.now()
        schedule = DisbursementSchedule.recurring(
            now + timedelta(days=1), RecurrenceFrequency.WEEKLY, now, max_occurrences=4,
        )
        disbursement_id = self.stored(disbursements, schedules, clock, schedule)
        assert schedules.find_by_disbursement_id(disbursement_id) == schedule

        advanced = schedule.increment_occurrence()
        schedules.save(disbursement_id, TEST_TENANT_ID, advanced)
        assert schedules.find_by_disbursement_id(disbursement_id).current_occurrence == 1

    def test_remove(self, disbursements, schedules, clock):
        disbursement_id = self.stored(disbursements, schedules, clock, DisbursementSchedule.immediate())
        assert schedules.remove(disbursement_id) is True
        assert schedules.find_by_disbursement_id(disbursement_id) is None
        assert schedules.remove(disbursement_id) is False

    def test_find_due(self, disbursements, schedules, clock):
        now = clock.now()
        immediate = self.stored(disbursements, schedules, clock, DisbursementSchedule.immediate())
        tomorrow = self.stored(
            disbursements, schedules, clock, DisbursementSchedule.scheduled(now + timedelta(days=1), now),
        )
        self.stored(
            disbursements, schedules, clock, DisbursementSchedule.scheduled(now + timedelta(days=5), now),
        )
        self.stored(
            disbursements, schedules, clock, DisbursementSchedule.immediate(), tenant_id=OTHER_TENANT_ID,
        )

        due = [i for i, _ in schedules.find_due(TEST_TENANT_ID, now + timedelta(days=2))]
        assert due == [immediate, tomorrow]
        assert len(schedules.find_due(TEST_TENANT_ID, now + timedelta(days=2), limit=1)) == 1

    def test_exhausted_recurrence_is_never_due(self, disbursements, schedules, clock):
        now = clock.now()
        schedule = DisbursementSchedule.recurring(
            now + timedelta(days=1), RecurrenceFrequency.DAILY, now, max_occurrences=1,
        ).increment_occurrence()
        self.stored(disbursements, schedules, clock, schedule)

        assert schedules.find_due(TEST_TENANT_ID, now + timedelta(days=30)) == []

    def test_find_upcoming(self, disbursements, schedules, clock):
        now = clock.now()
        soon = self.stored(
            disbursements, schedules, clock, DisbursementSchedule.scheduled(now + timedelta(days=3), now),
        )
        self.stored(
            disbursements, schedules, clock, DisbursementSchedule.scheduled(now + timedelta(days=10), now),
        )
        self.stored(disbursements, schedules, clock, DisbursementSchedule.immediate())

        upcoming = schedules.find_upcoming(TEST_TENANT_ID, now, now + timedelta(days=7))
        assert [i for i, _ in upcoming] == [soon]
