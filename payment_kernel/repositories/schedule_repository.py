"""SQLAlchemy implementation of DisbursementScheduleRepository."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.schedule import DisbursementSchedule, ScheduleType
from payment_kernel.logging_config import get_logger
from payment_kernel.models.schedule import DisbursementScheduleModel

logger = get_logger("repositories")


class SqlDisbursementScheduleRepository:
    """
    Disbursement schedules keyed by disbursement id.

    Schedules are values, so there is no version check: ``save`` replaces
    whatever is stored for the disbursement.  Flush only, never commits.
    """

    def __init__(self, session: Session):
        self.session = session

    def find_by_disbursement_id(self, disbursement_id: str) -> DisbursementSchedule | None:
        row = self.session.get(DisbursementScheduleModel, disbursement_id)
        return None if row is None else row.to_dto()

    def save(self, disbursement_id: str, tenant_id: str, schedule: DisbursementSchedule) -> None:
        row = self.session.get(DisbursementScheduleModel, disbursement_id)
        if row is None:
            self.session.add(DisbursementScheduleModel.from_dto(disbursement_id, tenant_id, schedule))
            action = "inserted"
        else:
            row.update_from_dto(schedule)
            action = "updated"
        self.session.flush()
        logger.debug(
            f"disbursement_schedule_{action}",
            extra={
                "entity_id": disbursement_id,
                "schedule_type": schedule.schedule_type.value,
                "current_occurrence": schedule.current_occurrence,
            },
        )

    def remove(self, disbursement_id: str) -> bool:
        row = self.session.get(DisbursementScheduleModel, disbursement_id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        return True

    def find_due(
        self, tenant_id: str, as_of: datetime, limit: int = 100,
    ) -> list[tuple[str, DisbursementSchedule]]:
        """Immediate schedules and those whose next run is at or before ``as_of``."""
        stmt = (
            select(DisbursementScheduleModel)
            .where(
                DisbursementScheduleModel.tenant_id == tenant_id,
                (DisbursementScheduleModel.schedule_type == ScheduleType.IMMEDIATE.value)
                | (DisbursementScheduleModel.next_run_at <= as_of),
            )
            .order_by(DisbursementScheduleModel.next_run_at.nulls_first(), DisbursementScheduleModel.id)
            .limit(limit)
        )
        return [(row.id, row.to_dto()) for row in self.session.execute(stmt).scalars()]

    def find_upcoming(
        self, tenant_id: str, start: datetime, end: datetime, limit: int = 50,
    ) -> list[tuple[str, DisbursementSchedule]]:
        """Schedules whose next run falls after ``start`` and no later than ``end``."""
        stmt = (
            select(DisbursementScheduleModel)
            .where(
                DisbursementScheduleModel.tenant_id == tenant_id,
                DisbursementScheduleModel.next_run_at > start,
                DisbursementScheduleModel.next_run_at <= end,
            )
            .order_by(DisbursementScheduleModel.next_run_at, DisbursementScheduleModel.id)
            .limit(limit)
        )
        return [(row.id, row.to_dto()) for row in self.session.execute(stmt).scalars()]
