"""
Module: payment_kernel.models.disbursement
Responsibility: ORM persistence for disbursements.

Invariants enforced:
    - reference_number is unique.
    - Optimistic locking through ``version`` (version_id_col).
    - Covering indexes for the approval queue and the ready-for-processing
      query (status + scheduled_date).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base
from payment_kernel.domain.disbursement import Disbursement, DisbursementStatus, RecipientInfo
from payment_kernel.domain.values import Money

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in DisbursementStatus)


class DisbursementModel(Base):
    """Persistent disbursement."""

    __tablename__ = "disbursements"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_disbursements_valid_status",
        ),
        Index("ix_disbursements_tenant_status", "tenant_id", "status"),
        Index("ix_disbursements_status_schedule", "status", "scheduled_date"),
        Index("ix_disbursements_tenant_completed", "tenant_id", "completed_at"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reference_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    recipient: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    method_type: Mapped[str] = mapped_column(String(32), nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_transaction_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    source_document_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Disbursement:
        return Disbursement(
            id=self.id,
            tenant_id=self.tenant_id,
            reference_number=self.reference_number,
            amount=Money.from_minor_units(self.amount_minor, self.currency),
            recipient=RecipientInfo.from_dict(self.recipient),
            method_type=self.method_type,
            created_by=self.created_by,
            created_at=self.created_at,
            status=DisbursementStatus(self.status),
            description=self.description,
            source_account_id=self.source_account_id,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            approval_notes=self.approval_notes,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            scheduled_date=self.scheduled_date,
            processed_at=self.processed_at,
            completed_at=self.completed_at,
            payment_transaction_id=self.payment_transaction_id,
            source_document_ids=list(self.source_document_ids or []),
            metadata=dict(self.details or {}),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Disbursement) -> DisbursementModel:
        model = cls(id=dto.id)
        model.update_from_dto(dto)
        return model

    def update_from_dto(self, dto: Disbursement) -> None:
        self.tenant_id = dto.tenant_id
        self.reference_number = dto.reference_number
        self.amount_minor = dto.amount.minor_units
        self.currency = dto.amount.currency.code
        self.recipient = dto.recipient.to_dict()
        self.method_type = dto.method_type.value
        self.created_by = dto.created_by
        self.created_at = dto.created_at
        self.status = dto.status.value
        self.description = dto.description
        self.source_account_id = dto.source_account_id
        self.approved_by = dto.approved_by
        self.approved_at = dto.approved_at
        self.approval_notes = dto.approval_notes
        self.rejected_by = dto.rejected_by
        self.rejected_at = dto.rejected_at
        self.rejection_reason = dto.rejection_reason
        self.scheduled_date = dto.scheduled_date
        self.processed_at = dto.processed_at
        self.completed_at = dto.completed_at
        self.payment_transaction_id = dto.payment_transaction_id
        self.source_document_ids = list(dto.source_document_ids)
        self.details = dict(dto.metadata)

    def __repr__(self) -> str:
        return f"<DisbursementModel {self.reference_number} {self.status}>"
