"""
DisbursementSchedule -- when a disbursement runs, once or repeatedly.

Responsibility:
    Describes an immediate, one-off scheduled or recurring payout and
    computes its occurrence dates.  Immutable: advancing a recurrence
    returns a new schedule.

Architecture position:
    Kernel > Domain -- pure, no I/O.  The current time is passed in.

Invariants enforced:
    - A SCHEDULED or RECURRING schedule always has a start date.
    - A RECURRING schedule always has a frequency.
    - The recurrence end date is strictly after the start date.
    - ``max_occurrences`` is at least 1 when set.
    - ``current_occurrence`` never goes below zero.

Failure modes:
    - InvalidScheduleError on a malformed schedule or a start date that is
      not in the future at creation.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from payment_kernel.exceptions import InvalidScheduleError


class ScheduleType(str, Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    RECURRING = "recurring"

    @property
    def supports_recurrence(self) -> bool:
        return self is ScheduleType.RECURRING


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"

    def shift(self, start: datetime, steps: int) -> datetime:
        """
        The date ``steps`` periods after ``start``.

        Month-based frequencies count from ``start`` every time and clamp
        to the last day of a shorter month, so a schedule starting on the
        31st pays on the 28th/29th in February and the 31st again in March.
        """
        if self is RecurrenceFrequency.DAILY:
            return start + timedelta(days=steps)
        if self is RecurrenceFrequency.WEEKLY:
            return start + timedelta(weeks=steps)
        if self is RecurrenceFrequency.BIWEEKLY:
            return start + timedelta(weeks=2 * steps)
        return _add_months(start, steps * _MONTHS_PER_STEP[self])


_MONTHS_PER_STEP = {
    RecurrenceFrequency.MONTHLY: 1,
    RecurrenceFrequency.QUARTERLY: 3,
    RecurrenceFrequency.ANNUALLY: 12,
}


def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class DisbursementSchedule:
    """
    Timing of a disbursement.

    Contract:
        Build new schedules through ``immediate``, ``scheduled`` or
        ``recurring``; those reject start dates that are not in the
        future.  The constructor and ``from_dict`` only check structure,
        so persisted schedules whose start has passed still load.

    Guarantees:
        - Occurrence ``n`` of a recurring schedule is always computed from
          ``scheduled_date``, never from the previous occurrence.
        - ``next_occurrence`` returns None once the end date or the
          maximum number of occurrences has been reached.
    """

    schedule_type: ScheduleType
    scheduled_date: datetime | None = None
    recurrence_frequency: RecurrenceFrequency | None = None
    recurrence_end_date: datetime | None = None
    max_occurrences: int | None = None
    current_occurrence: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "schedule_type", ScheduleType(self.schedule_type))
        if self.recurrence_frequency is not None:
            object.__setattr__(
                self, "recurrence_frequency", RecurrenceFrequency(self.recurrence_frequency),
            )

        if self.schedule_type is not ScheduleType.IMMEDIATE and self.scheduled_date is None:
            raise InvalidScheduleError(
                f"A {self.schedule_type.value} schedule requires a scheduled date",
                field="scheduled_date",
            )
        if self.schedule_type is ScheduleType.RECURRING and self.recurrence_frequency is None:
            raise InvalidScheduleError(
                "A recurring schedule requires a recurrence frequency",
                field="recurrence_frequency",
            )
        if (
            self.recurrence_end_date is not None
            and self.scheduled_date is not None
            and self.recurrence_end_date <= self.scheduled_date
        ):
            raise InvalidScheduleError(
                f"Recurrence end date {self.recurrence_end_date:%Y-%m-%d} must be after "
                f"start date {self.scheduled_date:%Y-%m-%d}",
                field="recurrence_end_date",
            )
        if self.max_occurrences is not None and self.max_occurrences < 1:
            raise InvalidScheduleError(
                f"Maximum occurrences must be at least 1, got {self.max_occurrences}",
                field="max_occurrences",
            )
        if self.current_occurrence < 0:
            raise InvalidScheduleError(
                "Current occurrence cannot be negative", field="current_occurrence",
            )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def immediate(cls) -> DisbursementSchedule:
        return cls(ScheduleType.IMMEDIATE)

    @classmethod
    def scheduled(cls, scheduled_date: datetime, now: datetime) -> DisbursementSchedule:
        _require_future(scheduled_date, now)
        return cls(ScheduleType.SCHEDULED, scheduled_date=scheduled_date)

    @classmethod
    def recurring(
        cls,
        start_date: datetime,
        frequency: RecurrenceFrequency | str,
        now: datetime,
        end_date: datetime | None = None,
        max_occurrences: int | None = None,
    ) -> DisbursementSchedule:
        _require_future(start_date, now)
        return cls(
            ScheduleType.RECURRING,
            scheduled_date=start_date,
            recurrence_frequency=RecurrenceFrequency(frequency),
            recurrence_end_date=end_date,
            max_occurrences=max_occurrences,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_immediate(self) -> bool:
        return self.schedule_type is ScheduleType.IMMEDIATE

    def is_recurring(self) -> bool:
        return self.schedule_type.supports_recurrence

    def is_ready_for_processing(self, now: datetime) -> bool:
        if self.is_immediate():
            return True
        run_at = self.next_occurrence()
        return run_at is not None and run_at <= now

    def occurrence_date(self, occurrence: int) -> datetime:
        """Date of the zero-based ``occurrence``; occurrence 0 is the start date."""
        if not self.is_recurring() or occurrence == 0:
            return self.scheduled_date
        return self.recurrence_frequency.shift(self.scheduled_date, occurrence)

    def next_occurrence(self) -> datetime | None:
        """When the schedule next runs; None for immediate or exhausted schedules."""
        if not self.is_recurring():
            return self.scheduled_date
        if self.max_occurrences is not None and self.current_occurrence >= self.max_occurrences:
            return None
        run_at = self.occurrence_date(self.current_occurrence)
        if self.recurrence_end_date is not None and run_at > self.recurrence_end_date:
            return None
        return run_at

    def has_more_occurrences(self) -> bool:
        return self.is_recurring() and self.next_occurrence() is not None

    def remaining_occurrences(self) -> int | None:
        """Occurrences left under ``max_occurrences``; None when not capped."""
        if not self.is_recurring() or self.max_occurrences is None:
            return None
        return max(self.max_occurrences - self.current_occurrence, 0)

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def increment_occurrence(self) -> DisbursementSchedule:
        return replace(self, current_occurrence=self.current_occurrence + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_type": self.schedule_type.value,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "recurrence_frequency": (
                self.recurrence_frequency.value if self.recurrence_frequency else None
            ),
            "recurrence_end_date": (
                self.recurrence_end_date.isoformat() if self.recurrence_end_date else None
            ),
            "max_occurrences": self.max_occurrences,
            "current_occurrence": self.current_occurrence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DisbursementSchedule:
        return cls(
            schedule_type=ScheduleType(data["schedule_type"]),
            scheduled_date=_parse_datetime(data.get("scheduled_date")),
            recurrence_frequency=data.get("recurrence_frequency"),
            recurrence_end_date=_parse_datetime(data.get("recurrence_end_date")),
            max_occurrences=data.get("max_occurrences"),
            current_occurrence=int(data.get("current_occurrence") or 0),
        )


def _require_future(scheduled_date: datetime, now: datetime) -> None:
    if scheduled_date <= now:
        raise InvalidScheduleError(
            f"Scheduled date {scheduled_date:%Y-%m-%d %H:%M} must be in the future",
            field="scheduled_date",
        )
