"""
DisbursementScheduler -- immediate, one-off and recurring payout timing.

Responsibility:
    Builds DisbursementSchedules, attaches them to disbursements, lists
    disbursements that are due or coming up, and advances recurring
    schedules one occurrence at a time.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes DisbursementRepository
    and DisbursementScheduleRepository.  Paying a due disbursement out is
    left to DisbursementManager.

Invariants enforced:
    - A schedule is stored only after the disbursement accepted its start
      date, so a rejected schedule leaves nothing behind.
    - Only DRAFT, PENDING_APPROVAL and APPROVED disbursements are reported
      as due.
    - An occurrence is consumed at most once: the counter advances and is
      saved in the same call that reports it.

Failure modes:
    - DisbursementNotFoundError for an unknown disbursement.
    - InvalidScheduleError for a malformed, past, missing, non-recurring or
      exhausted schedule.
    - InvalidDisbursementStatusError when the disbursement can no longer be
      scheduled (completed, failed or cancelled).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.contracts import DisbursementRepository, DisbursementScheduleRepository
from payment_kernel.domain.disbursement import Disbursement, DisbursementStatus
from payment_kernel.domain.schedule import DisbursementSchedule, RecurrenceFrequency, ScheduleType
from payment_kernel.exceptions import DisbursementNotFoundError, InvalidScheduleError
from payment_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.disbursement_scheduler")

DUE_BATCH_SIZE = 100
UPCOMING_BATCH_SIZE = 50

PROCESSABLE_STATUSES: frozenset[DisbursementStatus] = frozenset({
    DisbursementStatus.DRAFT,
    DisbursementStatus.PENDING_APPROVAL,
    DisbursementStatus.APPROVED,
})


class DisbursementScheduler:
    """
    Schedule bookkeeping for disbursements.

    Contract:
        Schedules are keyed by disbursement id; scheduling a disbursement
        again replaces its previous schedule.

    Non-goals:
        - Does NOT execute payouts.
        - Does NOT commit or roll back.
    """

    def __init__(
        self,
        repository: DisbursementRepository,
        schedule_repository: DisbursementScheduleRepository,
        clock: Clock | None = None,
    ):
        self.repository = repository
        self.schedule_repository = schedule_repository
        self.clock = clock or SystemClock()

    def _find_disbursement(self, disbursement_id: str) -> Disbursement:
        disbursement = self.repository.find_by_id(disbursement_id)
        if disbursement is None:
            raise DisbursementNotFoundError(disbursement_id)
        return disbursement

    def get_schedule(self, disbursement_id: str) -> DisbursementSchedule | None:
        return self.schedule_repository.find_by_disbursement_id(disbursement_id)

    # ------------------------------------------------------------------
    # Building and attaching schedules
    # ------------------------------------------------------------------

    def create_schedule(
        self,
        schedule_type: ScheduleType | str,
        scheduled_date: datetime | None = None,
        frequency: RecurrenceFrequency | str | None = None,
        end_date: datetime | None = None,
        max_occurrences: int | None = None,
    ) -> DisbursementSchedule:
        """Build a schedule of ``schedule_type`` without attaching it to anything."""
        schedule_type = ScheduleType(schedule_type)
        if schedule_type is ScheduleType.IMMEDIATE:
            return DisbursementSchedule.immediate()
        if scheduled_date is None:
            raise InvalidScheduleError(
                f"A {schedule_type.value} schedule requires a scheduled date",
                field="scheduled_date",
            )
        now = self.clock.now()
        if schedule_type is ScheduleType.SCHEDULED:
            return DisbursementSchedule.scheduled(scheduled_date, now)
        if frequency is None:
            raise InvalidScheduleError(
                "A recurring schedule requires a recurrence frequency",
                field="recurrence_frequency",
            )
        return DisbursementSchedule.recurring(
            scheduled_date, frequency, now, end_date=end_date, max_occurrences=max_occurrences,
        )

    def _attach(self, disbursement_id: str, schedule: DisbursementSchedule) -> Disbursement:
        disbursement = self._find_disbursement(disbursement_id)
        disbursement.schedule(schedule.scheduled_date, self.clock.now())
        self.repository.save(disbursement)
        self.schedule_repository.save(disbursement.id, disbursement.tenant_id, schedule)
        return disbursement

    def schedule_for_date(self, disbursement_id: str, scheduled_date: datetime) -> Disbursement:
        schedule = DisbursementSchedule.scheduled(scheduled_date, self.clock.now())
        disbursement = self._attach(disbursement_id, schedule)
        logger.info(
            "disbursement_scheduled",
            extra={"disbursement_id": disbursement.id, "scheduled_date": scheduled_date.isoformat()},
        )
        return disbursement

    def schedule_recurring(
        self,
        disbursement_id: str,
        start_date: datetime,
        frequency: RecurrenceFrequency | str,
        end_date: datetime | None = None,
        max_occurrences: int | None = None,
    ) -> Disbursement:
        schedule = DisbursementSchedule.recurring(
            start_date,
            frequency,
            self.clock.now(),
            end_date=end_date,
            max_occurrences=max_occurrences,
        )
        disbursement = self._attach(disbursement_id, schedule)
        logger.info(
            "disbursement_recurring_scheduled",
            extra={
                "disbursement_id": disbursement.id,
                "start_date": start_date.isoformat(),
                "frequency": schedule.recurrence_frequency.value,
                "end_date": end_date.isoformat() if end_date else None,
                "max_occurrences": max_occurrences,
            },
        )
        return disbursement

    def cancel_schedule(
        self, disbursement_id: str, cancelled_by: str, reason: str | None = None,
    ) -> Disbursement:
        """Drop the stored schedule; the disbursement itself is left untouched."""
        disbursement = self._find_disbursement(disbursement_id)
        if self.schedule_repository.remove(disbursement_id):
            logger.info(
                "disbursement_schedule_cancelled",
                extra={
                    "disbursement_id": disbursement_id,
                    "cancelled_by": cancelled_by,
                    "reason": reason,
                },
            )
        return disbursement

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_due_for_processing(
        self, tenant_id: str, as_of: datetime | None = None,
    ) -> list[Disbursement]:
        """Disbursements whose schedule has arrived and that can still be paid out."""
        as_of = as_of or self.clock.now()
        due: list[Disbursement] = []
        for disbursement_id, schedule in self.schedule_repository.find_due(
            tenant_id, as_of, DUE_BATCH_SIZE,
        ):
            if not schedule.is_ready_for_processing(as_of):
                continue
            disbursement = self.repository.find_by_id(disbursement_id)
            if disbursement is not None and disbursement.status in PROCESSABLE_STATUSES:
                due.append(disbursement)
        logger.debug(
            "disbursements_due_listed",
            extra={"tenant_id": tenant_id, "as_of": as_of.isoformat(), "count": len(due)},
        )
        return due

    def get_upcoming(self, tenant_id: str, days: int = 7) -> list[Disbursement]:
        """Disbursements whose next run falls within the next ``days`` days."""
        if days < 0:
            raise InvalidScheduleError("Look-ahead days cannot be negative", field="days")
        start = self.clock.now()
        upcoming: list[Disbursement] = []
        for disbursement_id, _ in self.schedule_repository.find_upcoming(
            tenant_id, start, start + timedelta(days=days), UPCOMING_BATCH_SIZE,
        ):
            disbursement = self.repository.find_by_id(disbursement_id)
            if disbursement is not None:
                upcoming.append(disbursement)
        return upcoming

    def has_more_occurrences(self, disbursement_id: str) -> bool:
        schedule = self.get_schedule(disbursement_id)
        return schedule is not None and schedule.has_more_occurrences()

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    def process_next_occurrence(self, disbursement_id: str) -> Disbursement:
        """
        Consume the next occurrence of a recurring schedule.

        Returns:
            The parent disbursement.  The stored schedule's occurrence
            counter has advanced by one.

        Raises:
            InvalidScheduleError: No schedule, not recurring, or no
                occurrences left.
            DisbursementNotFoundError: The disbursement is gone.
        """
        schedule = self.get_schedule(disbursement_id)
        if schedule is None:
            raise InvalidScheduleError(
                f"Disbursement {disbursement_id} has no schedule", field="disbursement_id",
            )
        if not schedule.is_recurring():
            raise InvalidScheduleError(
                f"Disbursement {disbursement_id} is not on a recurring schedule",
                field="schedule_type",
            )
        run_at = schedule.next_occurrence()
        if run_at is None:
            raise InvalidScheduleError(
                f"Disbursement {disbursement_id} has no occurrences left",
                field="current_occurrence",
            )
        disbursement = self._find_disbursement(disbursement_id)

        with LogContext.bind(tenant_id=disbursement.tenant_id, disbursement_id=disbursement.id):
            advanced = schedule.increment_occurrence()
            self.schedule_repository.save(disbursement.id, disbursement.tenant_id, advanced)
            following = advanced.next_occurrence()
            logger.info(
                "disbursement_occurrence_processed",
                extra={
                    "occurrence": advanced.current_occurrence,
                    "occurrence_date": run_at.isoformat(),
                    "next_date": following.isoformat() if following else None,
                    "remaining": advanced.remaining_occurrences(),
                },
            )
        return disbursement
