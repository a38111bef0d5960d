"""
Tests for DisbursementScheduler.

Covers:
- Building schedules by type and the errors for missing inputs
- Attaching one-off and recurring schedules to disbursements
- Due and upcoming listings, including status filtering and tenants
- Consuming recurring occurrences until the schedule is exhausted
"""

from datetime import timedelta

import pytest

from conftest import OTHER_TENANT_ID, TEST_TENANT_ID
from payment_kernel.domain.disbursement import DisbursementStatus
from payment_kernel.domain.schedule import DisbursementSchedule, RecurrenceFrequency, ScheduleType
from payment_kernel.exceptions import (
    DisbursementNotFoundError,
    InvalidDisbursementStatusError,
    InvalidScheduleError,
)
from payment_kernel.repositories import SqlDisbursementScheduleRepository
from payment_kernel.services import build_disbursement_scheduler

RECIPIENT = {"name": "Acme Supplies", "account_number": "1234567890", "recipient_id": "vendor-17"}


@pytest.fixture
def scheduler(session, clock):
    return build_disbursement_scheduler(session, clock)


def draft(manager, usd, tenant_id=TEST_TENANT_ID):
    return manager.create(tenant_id, usd("75.00"), RECIPIENT, "bank_transfer", "clerk-1")


def attach_immediate(session, disbursement):
    SqlDisbursementScheduleRepository(session).save(
        disbursement.id, disbursement.tenant_id, DisbursementSchedule.immediate(),
    )


class TestCreateSchedule:

    def test_immediate(self, scheduler):
        assert scheduler.create_schedule("immediate").is_immediate()

    def test_scheduled(self, scheduler, clock):
        run_at = clock.now() + timedelta(days=3)
        schedule = scheduler.create_schedule(ScheduleType.SCHEDULED, scheduled_date=run_at)
        assert schedule.schedule_type == ScheduleType.SCHEDULED
        assert schedule.scheduled_date == run_at

    def test_recurring(self, scheduler, clock):
        schedule = scheduler.create_schedule(
            "recurring",
            scheduled_date=clock.now() + timedelta(days=1),
            frequency="quarterly",
            max_occurrences=4,
        )
        assert schedule.recurrence_frequency == RecurrenceFrequency.QUARTERLY
        assert schedule.remaining_occurrences() == 4

    @pytest.mark.parametrize(
        "schedule_type, dated, frequency, field",
        [
            ("scheduled", False, None, "scheduled_date"),
            ("recurring", False, "weekly", "scheduled_date"),
            ("recurring", True, None, "recurrence_frequency"),
        ],
    )
    def test_missing_inputs(self, scheduler, clock, schedule_type, dated, frequency, field):
        scheduled_date = clock.now() + timedelta(days=1) if dated else None
        with pytest.raises(InvalidScheduleError) as exc_info:
            scheduler.create_schedule(schedule_type, scheduled_date=scheduled_date, frequency=frequency)
        assert exc_info.value.field == field

    def test_past_date_rejected(self, scheduler, clock):
        with pytest.raises(InvalidScheduleError, match="must be in the future"):
            scheduler.create_schedule("scheduled", scheduled_date=clock.now() - timedelta(hours=1))


class TestAttachingSchedules:

    def test_schedule_for_date(self, scheduler, disbursement_manager, clock, usd, captured_logs):
        disbursement = draft(disbursement_manager, usd)
        run_at = clock.now() + timedelta(days=2)

        scheduler.schedule_for_date(disbursement.id, run_at)

        assert disbursement_manager.find_or_fail(disbursement.id).scheduled_date == run_at
        assert scheduler.get_schedule(disbursement.id) == DisbursementSchedule.scheduled(run_at, clock.now())
        assert any(r["message"] == "disbursement_scheduled" for r in captured_logs())

    def test_schedule_recurring(self, scheduler, disbursement_manager, clock, usd):
        disbursement = draft(disbursement_manager, usd)
        start = clock.now() + timedelta(days=1)

        scheduler.schedule_recurring(disbursement.id, start, "monthly", max_occurrences=6)

        schedule = scheduler.get_schedule(disbursement.id)
        assert schedule.is_recurring()
        assert schedule.max_occurrences == 6
        assert disbursement_manager.find_or_fail(disbursement.id).scheduled_date == start
        assert scheduler.has_more_occurrences(disbursement.id)

    def test_rescheduling_replaces_schedule(self, scheduler, disbursement_manager, clock, usd):
        disbursement = draft(disbursement_manager, usd)
        scheduler.schedule_recurring(disbursement.id, clock.now() + timedelta(days=1), "weekly")

        later = clock.now() + timedelta(days=9)
        scheduler.schedule_for_date(disbursement.id, later)

        schedule = scheduler.get_schedule(disbursement.id)
        assert schedule.schedule_type == ScheduleType.SCHEDULED
        assert schedule.scheduled_date == later

    def test_unknown_disbursement(self, scheduler, clock):
        with pytest.raises(DisbursementNotFoundError):
            scheduler.schedule_for_date("disb_missing", clock.now() + timedelta(days=1))

    def test_cancelled_disbursement_keeps_no_schedule(self, scheduler, disbursement_manager, clock, usd):
        disbursement = draft(disbursement_manager, usd)
        disbursement_manager.cancel(disbursement.id, "clerk-1", "duplicate")

        with pytest.raises(InvalidDisbursementStatusError):
            scheduler.schedule_for_date(disbursement.id, clock.now() + timedelta(days=1))
        assert scheduler.get_schedule(disbursement.id) is None

    def test_cancel_schedule(self, scheduler, disbursement_manager, clock, usd, captured_logs):
        disbursement = draft(disbursement_manager, usd)
        scheduler.schedule_for_date(disbursement.id, clock.now() + timedelta(days=2))

        returned = scheduler.cancel_schedule(disbursement.id, "mgr-1", "vendor on hold")

        assert returned.id == disbursement.id
        assert returned.status == DisbursementStatus.DRAFT
        assert scheduler.get_schedule(disbursement.id) is None
        [record] = [r for r in captured_logs() if r["message"] == "disbursement_schedule_cancelled"]
        assert record["cancelled_by"] == "mgr-1"

    def test_cancel_without_schedule_is_quiet(self, scheduler, disbursement_manager, usd, captured_logs):
        disbursement = draft(disbursement_manager, usd)
        scheduler.cancel_schedule(disbursement.id, "mgr-1")
        assert not any(r["message"] == "disbursement_schedule_cancelled" for r in captured_logs())


class TestListings:

    def test_due_for_processing(self, session, scheduler, disbursement_manager, clock, usd):
        now = clock.now()
        immediate = draft(disbursement_manager, usd)
        attach_immediate(session, immediate)
        tomorrow = draft(disbursement_manager, usd)
        scheduler.schedule_for_date(tomorrow.id, now + timedelta(days=1))
        next_week = draft(disbursement_manager, usd)
        scheduler.schedule_for_date(next_week.id, now + timedelta(days=7))

        assert [d.id for d in scheduler.get_due_for_processing(TEST_TENANT_ID)] == [immediate.id]

        clock.advance(days=2)
        due = {d.id for d in scheduler.get_due_for_processing(TEST_TENANT_ID)}
        assert due == {immediate.id, tomorrow.id}

    def test_due_ignores_finished_disbursements(self, session, scheduler, disbursement_manager, usd):
        disbursement = draft(disbursement_manager, usd)
        attach_immediate(session, disbursement)
        disbursement_manager.cancel(disbursement.id, "clerk-1", "no longer needed")

        assert scheduler.get_due_for_processing(TEST_TENANT_ID) == []

    def test_due_is_tenant_scoped(self, session, scheduler, disbursement_manager, usd):
        disbursement = draft(disbursement_manager, usd, tenant_id=OTHER_TENANT_ID)
        attach_immediate(session, disbursement)

        assert scheduler.get_due_for_processing(TEST_TENANT_ID) == []
        assert len(scheduler.get_due_for_processing(OTHER_TENANT_ID)) == 1

    def test_due_as_of(self, scheduler, disbursement_manager, clock, usd):
        disbursement = draft(disbursement_manager, usd)
        scheduler.schedule_for_date(disbursement.id, clock.now() + timedelta(days=4))

        due = scheduler.get_due_for_processing(TEST_TENANT_ID, as_of=clock.now() + timedelta(days=5))
        assert [d.id for d in due] == [disbursement.id]

    def test_upcoming(self, scheduler, disbursement_manager, clock, usd):
        soon = draft(disbursement_manager, usd)
        scheduler.schedule_for_date(soon.id, clock.now() + timedelta(days=3))
        later = draft(disbursement_manager, usd)
        scheduler.schedule_for_date(later.id, clock.now() + timedelta(days=20))

        assert [d.id for d in scheduler.get_upcoming(TEST_TENANT_ID)] == [soon.id]
        assert [d.id for d in scheduler.get_upcoming(TEST_TENANT_ID, days=30)] == [soon.id, later.id]

    def test_upcoming_rejects_negative_window(self, scheduler):
        with pytest.raises(InvalidScheduleError):
            scheduler.get_upcoming(TEST_TENANT_ID, days=-1)


class TestRecurrence:

    def test_occurrences_until_exhausted(self, scheduler, disbursement_manager, clock, usd, captured_logs):
        disbursement = draft(disbursement_manager, usd)
        scheduler.schedule_recurring(
            disbursement.id, clock.now() + timedelta(days=1), "weekly", max_occurrences=2,
        )

        returned = scheduler.process_next_occurrence(disbursement.id)
        assert returned.id == disbursement.id
        assert scheduler.get_schedule(disbursement.id).current_occurrence == 1
        assert scheduler.has_more_occurrences(disbursement.id)

        scheduler.process_next_occurrence(disbursement.id)
        assert not scheduler.has_more_occurrences(disbursement.id)
        with pytest.raises(InvalidScheduleError, match="no occurrences left"):
            scheduler.process_next_occurrence(disbursement.id)

        records = [r for r in captured_logs() if r["message"] == "disbursement_occurrence_processed"]
        assert [r["occurrence"] for r in records] == [1, 2]
        assert records[-1]["remaining"] == 0
        assert records[-1]["next_date"] is None
        assert records[0]["disbursement_id"] == disbursement.id

    def test_next_run_moves_with_occurrences(self, scheduler, disbursement_manager, clock, usd):
        disbursement = draft(disbursement_manager, usd)
        start = clock.now() + timedelta(days=1)
        scheduler.schedule_recurring(disbursement.id, start, "weekly")

        scheduler.process_next_occurrence(disbursement.id)

        assert scheduler.get_due_for_processing(TEST_TENANT_ID, as_of=start) == []
        due = scheduler.get_due_for_processing(TEST_TENANT_ID, as_of=start + timedelta(days=7))
        assert [d.id for d in due] == [disbursement.id]

    def test_end_date_stops_recurrence(self, scheduler, disbursement_manager, clock, usd):
        disbursement = draft(disbursement_manager, usd)
        start = clock.now() + timedelta(days=1)
        scheduler.schedule_recurring(
            disbursement.id, start, RecurrenceFrequency.MONTHLY, end_date=start + timedelta(days=40),
        )

        scheduler.process_next_occurrence(disbursement.id)
        scheduler.process_next_occurrence(disbursement.id)

        assert not scheduler.has_more_occurrences(disbursement.id)

    def test_one_off_schedule_is_not_recurring(self, scheduler, disbursement_manager, clock, usd):
        disbursement = draft(disbursement_manager, usd)
        scheduler.schedule_for_date(disbursement.id, clock.now() + timedelta(days=1))

        with pytest.raises(InvalidScheduleError, match="not on a recurring schedule"):
            scheduler.process_next_occurrence(disbursement.id)

    def test_missing_schedule(self, scheduler, disbursement_manager, usd):
        disbursement = draft(disbursement_manager, usd)

        with pytest.raises(InvalidScheduleError, match="has no schedule"):
            scheduler.process_next_occurrence(disbursement.id)
        assert not scheduler.has_more_occurrences(disbursement.id)
