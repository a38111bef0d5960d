"""SQLAlchemy implementation of SettlementBatchRepository."""

from __future__ import annotations

from sqlalchemy import select

from payment_kernel.domain.settlement import SettlementBatch, SettlementBatchStatus
from payment_kernel.models.settlement import SettlementBatchEntryModel, SettlementBatchModel
from payment_kernel.repositories.base import BaseRepository


class SqlSettlementBatchRepository(BaseRepository[SettlementBatchModel, SettlementBatch]):
    model = SettlementBatchModel
    entity_name = "settlement_batch"

    def find_open_batch_for_payment(self, payment_id: str) -> SettlementBatch | None:
        stmt = (
            select(SettlementBatchModel)
            .join(SettlementBatchEntryModel, SettlementBatchEntryModel.batch_id == SettlementBatchModel.id)
            .where(
                SettlementBatchEntryModel.payment_id == payment_id,
                SettlementBatchModel.status == SettlementBatchStatus.OPEN.value,
            )
            .limit(1)
        )
        row = self.session.execute(stmt).scalars().first()
        return None if row is None else row.to_dto()

    def find_open_batches(
        self, tenant_id: str, processor_id: str | None = None,
    ) -> list[SettlementBatch]:
        stmt = select(SettlementBatchModel).where(
            SettlementBatchModel.tenant_id == tenant_id,
            SettlementBatchModel.status == SettlementBatchStatus.OPEN.value,
        )
        if processor_id is not None:
            stmt = stmt.where(SettlementBatchModel.processor_id == processor_id)
        stmt = stmt.order_by(SettlementBatchModel.opened_at, SettlementBatchModel.id)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]
