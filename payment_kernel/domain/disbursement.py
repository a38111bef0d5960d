"""
Disbursement entity -- an outbound payment gated by approval.

Responsibility:
    Tracks a payout from draft through submission, approval or rejection,
    processing, and completion or failure.  Every status change goes
    through ``DISBURSEMENT_WORKFLOW``.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Time is passed in by the manager.

Invariants enforced:
    - Only the moves in DISBURSEMENT_WORKFLOW are legal.
    - ``reference_number`` is assigned at creation and never changes.
    - Cancellation is possible only before processing starts.
    - A scheduled date is always strictly in the future when set.

Failure modes:
    - InvalidDisbursementStatusError on an illegal transition.
    - InvalidRecipientInfoError on incomplete recipient details.
    - PaymentValidationError on a past schedule or blank rejection reason.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from payment_kernel.domain.payment import PaymentMethodType
from payment_kernel.domain.values import Money
from payment_kernel.domain.workflow import Transition, Workflow
from payment_kernel.exceptions import (
    InvalidDisbursementStatusError,
    InvalidRecipientInfoError,
    PaymentValidationError,
)
from payment_kernel.logging_config import get_logger

logger = get_logger("domain.disbursement")


class DisbursementStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


DISBURSEMENT_WORKFLOW = Workflow(
    name="disbursement",
    description="Disbursement approval and payout lifecycle",
    initial_state=DisbursementStatus.DRAFT,
    states=tuple(DisbursementStatus),
    transitions=(
        Transition(DisbursementStatus.DRAFT, DisbursementStatus.PENDING_APPROVAL, action="submit_for_approval"),
        Transition(DisbursementStatus.PENDING_APPROVAL, DisbursementStatus.APPROVED, action="approve"),
        Transition(DisbursementStatus.PENDING_APPROVAL, DisbursementStatus.REJECTED, action="reject"),
        Transition(DisbursementStatus.APPROVED, DisbursementStatus.PROCESSING, action="mark_as_processing"),
        Transition(DisbursementStatus.PROCESSING, DisbursementStatus.COMPLETED, action="mark_as_completed"),
        Transition(DisbursementStatus.PROCESSING, DisbursementStatus.FAILED, action="mark_as_failed"),
        Transition(DisbursementStatus.DRAFT, DisbursementStatus.CANCELLED, action="cancel"),
        Transition(DisbursementStatus.PENDING_APPROVAL, DisbursementStatus.CANCELLED, action="cancel"),
        Transition(DisbursementStatus.APPROVED, DisbursementStatus.CANCELLED, action="cancel"),
    ),
    terminal_states=(
        DisbursementStatus.REJECTED,
        DisbursementStatus.COMPLETED,
        DisbursementStatus.FAILED,
        DisbursementStatus.CANCELLED,
    ),
)

UNSCHEDULABLE_STATUSES: frozenset[DisbursementStatus] = frozenset({
    DisbursementStatus.COMPLETED,
    DisbursementStatus.CANCELLED,
    DisbursementStatus.FAILED,
})

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Becomes the outbound payment's payee_id.
MAX_RECIPIENT_ID_LENGTH = 64


@dataclass(frozen=True)
class RecipientInfo:
    """
    Who receives a disbursement and how to route funds to them.

    Guarantees:
        - ``name`` is non-blank.
        - At least one routing field (account number, email, wallet) is set.
    """

    name: str
    recipient_id: str | None = None
    account_number: str | None = None
    bank_code: str | None = None
    email: str | None = None
    wallet_id: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise InvalidRecipientInfoError("Recipient name is required", field="name")
        if not (self.account_number or self.email or self.wallet_id):
            raise InvalidRecipientInfoError(
                "Recipient requires an account number, email or wallet id",
                field="account_number",
            )
        if self.account_number is not None and not self.account_number.strip().isalnum():
            raise InvalidRecipientInfoError(
                "Recipient account number must be alphanumeric", field="account_number"
            )
        if self.email is not None and not _EMAIL_PATTERN.match(self.email):
            raise InvalidRecipientInfoError("Recipient email is malformed", field="email")
        if self.recipient_id is not None and len(self.recipient_id) > MAX_RECIPIENT_ID_LENGTH:
            raise InvalidRecipientInfoError(
                f"Recipient id cannot exceed {MAX_RECIPIENT_ID_LENGTH} characters",
                field="recipient_id",
            )

    def masked_account_number(self) -> str | None:
        """Account number with all but the last four characters hidden."""
        if not self.account_number:
            return None
        visible = self.account_number[-4:]
        return "*" * max(len(self.account_number) - 4, 0) + visible

    def to_dict(self) -> dict[str, str | None]:
        return {
            "name": self.name,
            "recipient_id": self.recipient_id,
            "account_number": self.account_number,
            "bank_code": self.bank_code,
            "email": self.email,
            "wallet_id": self.wallet_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecipientInfo:
        return cls(**{k: data.get(k) for k in (
            "name", "recipient_id", "account_number", "bank_code", "email", "wallet_id",
        )})


def generate_disbursement_id() -> str:
    return f"disb_{uuid4().hex}"


def generate_reference_number(now: datetime, prefix: str = "DISB") -> str:
    """``DISB-YYYYMMDD-XXXXXXXX`` with a random upper-case hex suffix."""
    return f"{prefix}-{now:%Y%m%d}-{uuid4().hex[:8].upper()}"


class Disbursement:
    """
    Outbound payout awaiting approval, processing or already settled.

    Contract:
        Built through ``create`` for new disbursements; the constructor also
        rehydrates persisted ones (status and version included).  Status is
        exposed read-only and changes only through the transition methods.
    """

    def __init__(
        self,
        *,
        id: str,
        tenant_id: str,
        reference_number: str,
        amount: Money,
        recipient: RecipientInfo,
        method_type: PaymentMethodType,
        created_by: str,
        created_at: datetime,
        status: DisbursementStatus = DisbursementStatus.DRAFT,
        description: str | None = None,
        source_account_id: str | None = None,
        approved_by: str | None = None,
        approved_at: datetime | None = None,
        approval_notes: str | None = None,
        rejected_by: str | None = None,
        rejected_at: datetime | None = None,
        rejection_reason: str | None = None,
        scheduled_date: datetime | None = None,
        processed_at: datetime | None = None,
        completed_at: datetime | None = None,
        payment_transaction_id: str | None = None,
        source_document_ids: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        version: int = 0,
    ):
        self.id = id
        self.tenant_id = tenant_id
        self.reference_number = reference_number
        self.amount = amount
        self.recipient = recipient
        self.method_type = PaymentMethodType(method_type)
        self.created_by = created_by
        self.created_at = created_at
        self._status = DisbursementStatus(status)
        self.description = description
        self.source_account_id = source_account_id
        self.approved_by = approved_by
        self.approved_at = approved_at
        self.approval_notes = approval_notes
        self.rejected_by = rejected_by
        self.rejected_at = rejected_at
        self.rejection_reason = rejection_reason
        self.scheduled_date = scheduled_date
        self.processed_at = processed_at
        self.completed_at = completed_at
        self.payment_transaction_id = payment_transaction_id
        self.source_document_ids: list[str] = list(source_document_ids or [])
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.version = version

    @property
    def status(self) -> DisbursementStatus:
        return self._status

    @classmethod
    def create(
        cls,
        *,
        tenant_id: str,
        amount: Money,
        recipient: RecipientInfo,
        method_type: PaymentMethodType,
        created_by: str,
        now: datetime,
        reference_prefix: str = "DISB",
        description: str | None = None,
        source_account_id: str | None = None,
        source_document_ids: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Disbursement:
        if not amount.is_positive:
            raise PaymentValidationError("Disbursement amount must be positive", field="amount")
        disbursement = cls(
            id=generate_disbursement_id(),
            tenant_id=tenant_id,
            reference_number=generate_reference_number(now, reference_prefix),
            amount=amount,
            recipient=recipient,
            method_type=method_type,
            created_by=created_by,
            created_at=now,
            description=description,
            source_account_id=source_account_id,
            metadata=dict(metadata or {}),
        )
        if source_document_ids:
            disbursement.link_source_documents(source_document_ids)
        return disbursement

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def can_transition_to(self, status: DisbursementStatus) -> bool:
        return DISBURSEMENT_WORKFLOW.can_transition(self.status, status)

    def can_be_cancelled(self) -> bool:
        return self.can_transition_to(DisbursementStatus.CANCELLED)

    def is_terminal(self) -> bool:
        return DISBURSEMENT_WORKFLOW.is_terminal(self.status)

    def is_scheduled_after(self, now: datetime) -> bool:
        return self.scheduled_date is not None and self.scheduled_date > now

    def is_ready_for_processing(self, now: datetime) -> bool:
        return self.status == DisbursementStatus.APPROVED and not self.is_scheduled_after(now)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_transition(self, target: DisbursementStatus, message: str) -> None:
        if not DISBURSEMENT_WORKFLOW.can_transition(self.status, target):
            raise InvalidDisbursementStatusError(
                current_status=self.status,
                required_status=DISBURSEMENT_WORKFLOW.sources_of(target),
                message=message,
                disbursement_id=self.id,
            )

    def _move_to(self, target: DisbursementStatus) -> None:
        previous = self._status
        self._status = target
        logger.debug(
            "disbursement_status_changed",
            extra={
                "disbursement_id": self.id,
                "from_status": previous.value,
                "to_status": target.value,
            },
        )

    def submit_for_approval(self) -> None:
        self._require_transition(
            DisbursementStatus.PENDING_APPROVAL,
            "Only draft disbursements can be submitted for approval",
        )
        self._move_to(DisbursementStatus.PENDING_APPROVAL)

    def approve(self, approver_id: str, now: datetime, comment: str | None = None) -> None:
        self._require_transition(
            DisbursementStatus.APPROVED,
            "Only pending approval disbursements can be approved",
        )
        if not approver_id:
            raise PaymentValidationError("Approver is required", field="approver_id")
        self._move_to(DisbursementStatus.APPROVED)
        self.approved_by = approver_id
        self.approved_at = now
        self.approval_notes = comment

    def reject(self, rejector_id: str, reason: str, now: datetime) -> None:
        self._require_transition(
            DisbursementStatus.REJECTED,
            "Only pending approval disbursements can be rejected",
        )
        if not reason or not reason.strip():
            raise PaymentValidationError("Rejection reason is required", field="reason")
        self._move_to(DisbursementStatus.REJECTED)
        self.rejected_by = rejector_id
        self.rejection_reason = reason
        self.rejected_at = now

    def mark_as_processing(self, now: datetime) -> None:
        self._require_transition(
            DisbursementStatus.PROCESSING,
            "Only approved disbursements can be processed",
        )
        self._move_to(DisbursementStatus.PROCESSING)
        self.processed_at = now

    def mark_as_completed(self, payment_transaction_id: str, now: datetime) -> None:
        self._require_transition(
            DisbursementStatus.COMPLETED,
            "Only processing disbursements can be completed",
        )
        self._move_to(DisbursementStatus.COMPLETED)
        self.payment_transaction_id = payment_transaction_id
        self.completed_at = now

    def mark_as_failed(self, code: str, message: str, now: datetime) -> None:
        self._require_transition(
            DisbursementStatus.FAILED,
            "Only processing disbursements can fail",
        )
        self._move_to(DisbursementStatus.FAILED)
        self.metadata["failure_code"] = code
        self.metadata["failure_message"] = message
        self.metadata["failed_at"] = now.isoformat()

    def cancel(self, actor_id: str, reason: str, now: datetime) -> None:
        self._require_transition(
            DisbursementStatus.CANCELLED,
            f"Disbursement in status {self.status.value} cannot be cancelled",
        )
        self._move_to(DisbursementStatus.CANCELLED)
        self.metadata["cancellation_reason"] = reason
        self.metadata["cancelled_by"] = actor_id
        self.metadata["cancelled_at"] = now.isoformat()

    # ------------------------------------------------------------------
    # Other mutators
    # ------------------------------------------------------------------

    def schedule(self, scheduled_date: datetime, now: datetime) -> None:
        if self.status in UNSCHEDULABLE_STATUSES:
            raise InvalidDisbursementStatusError(
                current_status=self.status,
                required_status=tuple(s for s in DisbursementStatus if s not in UNSCHEDULABLE_STATUSES),
                message=f"Cannot schedule a {self.status.value} disbursement",
                disbursement_id=self.id,
            )
        if scheduled_date <= now:
            raise PaymentValidationError("Scheduled date must be in the future", field="scheduled_date")
        self.scheduled_date = scheduled_date

    def link_source_documents(self, document_ids: list[str]) -> None:
        """Append source document ids, keeping first-seen order and no duplicates."""
        for document_id in document_ids:
            if document_id not in self.source_document_ids:
                self.source_document_ids.append(document_id)
