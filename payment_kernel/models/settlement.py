"""
Module: payment_kernel.models.settlement
Responsibility: ORM persistence for settlement batches and their entries.

Invariants enforced:
    - A payment appears at most once per batch (UNIQUE(batch_id, payment_id)).
    - Entries keep insertion order through ``position``.
    - Optimistic locking on the batch row through ``version``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_kernel.db.base import Base
from payment_kernel.domain.settlement import SettlementBatch, SettlementBatchStatus, SettlementEntry
from payment_kernel.domain.values import Money

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in SettlementBatchStatus)


class SettlementBatchModel(Base):
    """Persistent settlement batch."""

    __tablename__ = "settlement_batches"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_settlement_batches_valid_status",
        ),
        Index("ix_settlement_batches_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    processor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    expected_minor: Mapped[int | None] = mapped_column(nullable=True)
    actual_minor: Mapped[int | None] = mapped_column(nullable=True)
    processor_batch_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    opened_at: Mapped[datetime] = mapped_column(nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reconciled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(nullable=False)

    entries: Mapped[list[SettlementBatchEntryModel]] = relationship(
        "SettlementBatchEntryModel",
        back_populates="batch",
        order_by="SettlementBatchEntryModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> SettlementBatch:
        def money(minor: int | None) -> Money | None:
            return None if minor is None else Money.from_minor_units(minor, self.currency)

        return SettlementBatch(
            id=self.id,
            tenant_id=self.tenant_id,
            processor_id=self.processor_id,
            currency=self.currency,
            opened_at=self.opened_at,
            status=SettlementBatchStatus(self.status),
            entries=[
                SettlementEntry(
                    payment_id=e.payment_id,
                    amount=Money.from_minor_units(e.amount_minor, self.currency),
                    fee=Money.from_minor_units(e.fee_minor, self.currency),
                )
                for e in self.entries
            ],
            expected_settlement_amount=money(self.expected_minor),
            actual_settlement_amount=money(self.actual_minor),
            processor_batch_reference=self.processor_batch_reference,
            closed_at=self.closed_at,
            reconciled_at=self.reconciled_at,
            metadata=dict(self.details or {}),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: SettlementBatch) -> SettlementBatchModel:
        model = cls(id=dto.id)
        model.update_from_dto(dto)
        return model

    def update_from_dto(self, dto: SettlementBatch) -> None:
        self.tenant_id = dto.tenant_id
        self.processor_id = dto.processor_id
        self.currency = dto.currency
        self.status = dto.status.value
        self.expected_minor = (
            None if dto.expected_settlement_amount is None
            else dto.expected_settlement_amount.minor_units
        )
        self.actual_minor = (
            None if dto.actual_settlement_amount is None
            else dto.actual_settlement_amount.minor_units
        )
        self.processor_batch_reference = dto.processor_batch_reference
        self.opened_at = dto.opened_at
        self.closed_at = dto.closed_at
        self.reconciled_at = dto.reconciled_at
        self.details = dict(dto.metadata)

        # Entries are append/remove only; keep existing rows, drop removed, add new.
        wanted = {e.payment_id: e for e in dto.entries}
        self.entries = [row for row in self.entries if row.payment_id in wanted]
        for row in self.entries:
            row.amount_minor = wanted[row.payment_id].amount.minor_units
            row.fee_minor = wanted[row.payment_id].fee.minor_units
        present = {row.payment_id for row in self.entries}
        next_position = max((row.position for row in self.entries), default=-1) + 1
        for entry in dto.entries:
            if entry.payment_id in present:
                continue
            self.entries.append(
                SettlementBatchEntryModel(
                    id=f"sbe_{uuid4().hex}",
                    payment_id=entry.payment_id,
                    amount_minor=entry.amount.minor_units,
                    fee_minor=entry.fee.minor_units,
                    position=next_position,
                )
            )
            next_position += 1

    def __repr__(self) -> str:
        return f"<SettlementBatchModel {self.id} {self.status}>"


class SettlementBatchEntryModel(Base):
    """One payment inside a settlement batch."""

    __tablename__ = "settlement_batch_entries"

    __table_args__ = (
        UniqueConstraint("batch_id", "payment_id", name="uq_settlement_batch_entries_payment"),
        Index("ix_settlement_batch_entries_payment", "payment_id"),
    )

    batch_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("settlement_batches.id", ondelete="CASCADE"), nullable=False,
    )
    payment_id: Mapped[str] = mapped_column(String(40), nullable=False)
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    fee_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    position: Mapped[int] = mapped_column(nullable=False)

    batch: Mapped[SettlementBatchModel] = relationship(
        "SettlementBatchModel", back_populates="entries",
    )
