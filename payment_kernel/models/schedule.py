"""
Module: payment_kernel.models.schedule
Responsibility: ORM persistence for disbursement schedules.

Invariants enforced:
    - At most one schedule per disbursement (the row id is the disbursement id).
    - ``next_run_at`` mirrors ``DisbursementSchedule.next_occurrence()`` and
      is NULL for immediate and exhausted schedules.
    - Covering index for the due and upcoming queries (tenant + next_run_at).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base
from payment_kernel.domain.schedule import DisbursementSchedule, ScheduleType

_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in ScheduleType)


class DisbursementScheduleModel(Base):
    """Persistent schedule of one disbursement."""

    __tablename__ = "disbursement_schedules"

    __table_args__ = (
        CheckConstraint(
            f"schedule_type IN ({_TYPE_VALUES})",
            name="ck_disbursement_schedules_valid_type",
        ),
        CheckConstraint(
            "current_occurrence >= 0",
            name="ck_disbursement_schedules_occurrence_non_negative",
        ),
        Index("ix_disbursement_schedules_tenant_next_run", "tenant_id", "next_run_at"),
    )

    id: Mapped[str] = mapped_column(String(40), ForeignKey("disbursements.id"), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    schedule_type: Mapped[str] = mapped_column(String(16), nullable=False)
    scheduled_date: Mapped[datetime | None] = mapped_column(nullable=True)
    recurrence_frequency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    recurrence_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    max_occurrences: Mapped[int | None] = mapped_column(nullable=True)
    current_occurrence: Mapped[int] = mapped_column(nullable=False, default=0)
    next_run_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> DisbursementSchedule:
        return DisbursementSchedule(
            schedule_type=ScheduleType(self.schedule_type),
            scheduled_date=self.scheduled_date,
            recurrence_frequency=self.recurrence_frequency,
            recurrence_end_date=self.recurrence_end_date,
            max_occurrences=self.max_occurrences,
            current_occurrence=self.current_occurrence,
        )

    @classmethod
    def from_dto(
        cls, disbursement_id: str, tenant_id: str, dto: DisbursementSchedule,
    ) -> DisbursementScheduleModel:
        model = cls(id=disbursement_id, tenant_id=tenant_id)
        model.update_from_dto(dto)
        return model

    def update_from_dto(self, dto: DisbursementSchedule) -> None:
        self.schedule_type = dto.schedule_type.value
        self.scheduled_date = dto.scheduled_date
        self.recurrence_frequency = (
            dto.recurrence_frequency.value if dto.recurrence_frequency else None
        )
        self.recurrence_end_date = dto.recurrence_end_date
        self.max_occurrences = dto.max_occurrences
        self.current_occurrence = dto.current_occurrence
        self.next_run_at = dto.next_occurrence()

    def __repr__(self) -> str:
        return f"<DisbursementScheduleModel {self.id} {self.schedule_type} next={self.next_run_at}>"
