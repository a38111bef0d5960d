"""SQLAlchemy implementation of DisbursementRepository."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select

from payment_kernel.domain.disbursement import (
    DISBURSEMENT_WORKFLOW,
    Disbursement,
    DisbursementStatus,
)
from payment_kernel.domain.values import Money
from payment_kernel.exceptions import DisbursementNotFoundError, InvalidDisbursementStatusError
from payment_kernel.models.disbursement import DisbursementModel
from payment_kernel.repositories.base import BaseRepository


class SqlDisbursementRepository(BaseRepository[DisbursementModel, Disbursement]):
    """Disbursements on SQLAlchemy; lists are ordered by creation time, then id."""

    model = DisbursementModel
    entity_name = "disbursement"

    def update_status(self, disbursement_id: str, status: DisbursementStatus) -> None:
        row = self._load(disbursement_id)
        if row is None:
            raise DisbursementNotFoundError(disbursement_id)
        current = DisbursementStatus(row.status)
        status = DisbursementStatus(status)
        if not DISBURSEMENT_WORKFLOW.can_transition(current, status):
            raise InvalidDisbursementStatusError(
                current_status=current,
                required_status=DISBURSEMENT_WORKFLOW.sources_of(status),
                disbursement_id=disbursement_id,
            )
        row.status = status.value
        self._flush(disbursement_id)

    def find_by_status(
        self, status: DisbursementStatus, tenant_id: str | None = None,
    ) -> list[Disbursement]:
        stmt = select(DisbursementModel).where(
            DisbursementModel.status == DisbursementStatus(status).value
        )
        if tenant_id is not None:
            stmt = stmt.where(DisbursementModel.tenant_id == tenant_id)
        stmt = stmt.order_by(DisbursementModel.created_at, DisbursementModel.id)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def find_pending_approval(self, tenant_id: str) -> list[Disbursement]:
        return self.find_by_status(DisbursementStatus.PENDING_APPROVAL, tenant_id)

    def find_ready_for_processing(self, tenant_id: str, as_of: datetime) -> list[Disbursement]:
        """Approved disbursements with no schedule or a schedule at or before ``as_of``."""
        stmt = (
            select(DisbursementModel)
            .where(
                DisbursementModel.tenant_id == tenant_id,
                DisbursementModel.status == DisbursementStatus.APPROVED.value,
                (DisbursementModel.scheduled_date.is_(None))
                | (DisbursementModel.scheduled_date <= as_of),
            )
            .order_by(DisbursementModel.created_at, DisbursementModel.id)
        )
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def completed_usage_since(
        self, tenant_id: str, currency: str, since: datetime,
    ) -> tuple[Money, int]:
        stmt = select(
            func.coalesce(func.sum(DisbursementModel.amount_minor), 0),
            func.count(DisbursementModel.id),
        ).where(
            DisbursementModel.tenant_id == tenant_id,
            DisbursementModel.currency == currency,
            DisbursementModel.status == DisbursementStatus.COMPLETED.value,
            DisbursementModel.completed_at >= since,
        )
        total_minor, count = self.session.execute(stmt).one()
        return Money.from_minor_units(int(total_minor), currency), int(count)
