"""
DisbursementManager -- approval-gated outbound payouts.

Responsibility:
    Creates disbursements, walks them through submission, approval or
    rejection, and pays approved ones out through a PaymentExecutor as an
    OUTBOUND PaymentTransaction.  Enforces DisbursementLimits from
    PaymentConfig.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes DisbursementRepository,
    PaymentExecutor, EventDispatcher and (optionally) PaymentRepository to
    keep the outbound transactions it creates.

Invariants enforced:
    - Every status change goes through a Disbursement transition method.
    - Per-transaction limits are checked at creation; period amount and
      count limits are checked against completed usage when processing.
    - A disbursement scheduled in the future is never processed early.
    - Executor failures are captured: the disbursement becomes FAILED and
      the failure is returned in the ExecutionResult, never raised.

Failure modes:
    - DisbursementNotFoundError for an unknown id.
    - InvalidDisbursementStatusError for an illegal transition.
    - InvalidRecipientInfoError / PaymentValidationError for bad input.
    - DisbursementLimitExceededError when a limit would be breached.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from payment_kernel.config import PaymentConfig
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.contracts import (
    DisbursementRepository,
    EventDispatcher,
    ExecutionResult,
    PaymentExecutor,
    PaymentRepository,
)
from payment_kernel.domain.disbursement import Disbursement, DisbursementStatus, RecipientInfo
from payment_kernel.domain.events import (
    DisbursementApprovedEvent,
    DisbursementCancelledEvent,
    DisbursementCompletedEvent,
    DisbursementCreatedEvent,
    DisbursementFailedEvent,
    DisbursementRejectedEvent,
)
from payment_kernel.domain.limits import LimitPeriod
from payment_kernel.domain.payment import PaymentDirection, PaymentMethodType, PaymentTransaction
from payment_kernel.domain.values import Money
from payment_kernel.exceptions import (
    DisbursementNotFoundError,
    InvalidDisbursementStatusError,
    PaymentValidationError,
)
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.services.payment_manager import normalize_execution_result, run_executor
from payment_kernel.services.payment_validator import PaymentValidator

logger = get_logger("services.disbursement_manager")


class DisbursementManager:
    """
    Disbursement lifecycle orchestration.

    Contract:
        ``payment_repository`` is optional; when given, the outbound
        PaymentTransaction built for each payout is saved with its final
        status so the payout is visible alongside inbound payments.

    Non-goals:
        - Does NOT decide who may approve; callers pass the approver id.
        - Does NOT commit or roll back.
    """

    def __init__(
        self,
        repository: DisbursementRepository,
        executor: PaymentExecutor,
        dispatcher: EventDispatcher,
        clock: Clock | None = None,
        config: PaymentConfig | None = None,
        payment_repository: PaymentRepository | None = None,
        executor_name: str | None = None,
    ):
        self.repository = repository
        self.executor = executor
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()
        self.config = config or PaymentConfig()
        self.payment_repository = payment_repository
        self.executor_name = executor_name or type(executor).__name__
        self._validator = PaymentValidator(self.config)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_or_fail(self, disbursement_id: str) -> Disbursement:
        disbursement = self.repository.find_by_id(disbursement_id)
        if disbursement is None:
            raise DisbursementNotFoundError(disbursement_id)
        return disbursement

    def get_status(self, disbursement_id: str) -> DisbursementStatus:
        return self.find_or_fail(disbursement_id).status

    def find_by_status(
        self, status: DisbursementStatus, tenant_id: str | None = None,
    ) -> list[Disbursement]:
        return self.repository.find_by_status(status, tenant_id)

    def get_pending_approvals(self, tenant_id: str) -> list[Disbursement]:
        return self.repository.find_pending_approval(tenant_id)

    def get_ready_for_processing(self, tenant_id: str) -> list[Disbursement]:
        """Approved disbursements for the tenant whose schedule (if any) has arrived."""
        return self.repository.find_ready_for_processing(tenant_id, self.clock.now())

    # ------------------------------------------------------------------
    # Creation and approval
    # ------------------------------------------------------------------

    def create(
        self,
        tenant_id: str,
        amount: Money,
        recipient: RecipientInfo | dict[str, Any],
        method_type: PaymentMethodType | str,
        created_by: str,
        source_document_ids: list[str] | None = None,
        scheduled_date: datetime | None = None,
        metadata: dict[str, Any] | None = None,
        description: str | None = None,
        source_account_id: str | None = None,
    ) -> Disbursement:
        """
        Create a DRAFT disbursement.

        Raises:
            PaymentValidationError: Missing field, non-positive amount or a
                schedule that is not in the future.
            InvalidRecipientInfoError: Recipient details are incomplete.
            DisbursementLimitExceededError: Amount is above the
                per-transaction limit.
        """
        self._validator.require(tenant_id, "tenant_id")
        self._validator.require(created_by, "created_by")
        self._validator.require(amount, "amount")
        if not amount.is_positive:
            raise PaymentValidationError("Disbursement amount must be positive", field="amount")
        if not isinstance(recipient, RecipientInfo):
            recipient = RecipientInfo.from_dict(recipient)
        parsed_method = self._validator.parse_method_type(method_type)
        self.config.disbursement_limits.validate_amount(amount)

        now = self.clock.now()
        disbursement = Disbursement.create(
            tenant_id=tenant_id,
            amount=amount,
            recipient=recipient,
            method_type=parsed_method,
            created_by=created_by,
            now=now,
            reference_prefix=self.config.disbursement_reference_prefix,
            description=description,
            source_account_id=source_account_id,
            source_document_ids=source_document_ids,
            metadata=metadata,
        )
        if scheduled_date is not None:
            disbursement.schedule(scheduled_date, now)

        self.repository.save(disbursement)
        self.dispatcher.dispatch(DisbursementCreatedEvent(
            tenant_id=tenant_id,
            occurred_at=now,
            disbursement_id=disbursement.id,
            reference_number=disbursement.reference_number,
            amount=amount,
            created_by=created_by,
        ))
        logger.info(
            "disbursement_created",
            extra={
                "disbursement_id": disbursement.id,
                "reference_number": disbursement.reference_number,
                "amount": str(amount),
                "recipient": recipient.name,
                "account": recipient.masked_account_number(),
            },
        )
        return disbursement

    def submit_for_approval(self, disbursement_id: str) -> Disbursement:
        disbursement = self.find_or_fail(disbursement_id)
        disbursement.submit_for_approval()
        self.repository.save(disbursement)
        logger.info("disbursement_submitted", extra={"disbursement_id": disbursement.id})
        return disbursement

    def approve(
        self, disbursement_id: str, approver_id: str, comment: str | None = None,
    ) -> Disbursement:
        disbursement = self.find_or_fail(disbursement_id)
        now = self.clock.now()
        disbursement.approve(approver_id, now, comment)
        self.repository.save(disbursement)
        self.dispatcher.dispatch(DisbursementApprovedEvent(
            tenant_id=disbursement.tenant_id,
            occurred_at=now,
            disbursement_id=disbursement.id,
            approved_by=approver_id,
            comment=comment,
        ))
        logger.info(
            "disbursement_approved",
            extra={"disbursement_id": disbursement.id, "approved_by": approver_id},
        )
        return disbursement

    def reject(self, disbursement_id: str, rejector_id: str, reason: str) -> Disbursement:
        disbursement = self.find_or_fail(disbursement_id)
        now = self.clock.now()
        disbursement.reject(rejector_id, reason, now)
        self.repository.save(disbursement)
        self.dispatcher.dispatch(DisbursementRejectedEvent(
            tenant_id=disbursement.tenant_id,
            occurred_at=now,
            disbursement_id=disbursement.id,
            rejected_by=rejector_id,
            reason=reason,
        ))
        logger.info(
            "disbursement_rejected",
            extra={"disbursement_id": disbursement.id, "rejected_by": rejector_id, "reason": reason},
        )
        return disbursement

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _check_period_limits(self, disbursement: Disbursement, now: datetime) -> None:
        limits = self.config.disbursement_limits
        if not limits.has_period_limits():
            return
        for period in LimitPeriod:
            if limits.amount_limit(period) is None and limits.count_limit(period) is None:
                continue
            usage, count = self.repository.completed_usage_since(
                disbursement.tenant_id,
                disbursement.amount.currency.code,
                period.window_start(now),
            )
            limits.validate_period_amount(disbursement.amount, usage, period)
            limits.validate_period_count(count, period)

    def _build_transaction(self, disbursement: Disbursement, now: datetime) -> PaymentTransaction:
        return PaymentTransaction.create(
            tenant_id=disbursement.tenant_id,
            reference=disbursement.reference_number,
            direction=PaymentDirection.OUTBOUND,
            amount=disbursement.amount,
            method_type=disbursement.method_type,
            now=now,
            payee_id=disbursement.recipient.recipient_id or disbursement.id,
            metadata={
                "disbursement_id": disbursement.id,
                "recipient": disbursement.recipient.name,
            },
        )

    def process(self, disbursement_id: str) -> ExecutionResult:
        """
        Pay out an APPROVED disbursement.

        Returns:
            The executor's ExecutionResult.  On failure the disbursement is
            FAILED and the result carries the failure code and message.

        Raises:
            InvalidDisbursementStatusError: Disbursement is not APPROVED.
            PaymentValidationError: Scheduled date is still in the future.
            DisbursementLimitExceededError: A period limit would be breached.
        """
        disbursement = self.find_or_fail(disbursement_id)
        now = self.clock.now()

        if disbursement.status != DisbursementStatus.APPROVED:
            raise InvalidDisbursementStatusError(
                current_status=disbursement.status,
                required_status=DisbursementStatus.APPROVED,
                message="Only approved disbursements can be processed",
                disbursement_id=disbursement.id,
            )
        if disbursement.is_scheduled_after(now):
            raise PaymentValidationError(
                f"Disbursement is scheduled for {disbursement.scheduled_date:%Y-%m-%d} "
                "and cannot be processed yet",
                field="scheduled_date",
            )
        self._check_period_limits(disbursement, now)

        with LogContext.bind(tenant_id=disbursement.tenant_id, disbursement_id=disbursement.id):
            disbursement.mark_as_processing(now)
            self.repository.save(disbursement)

            transaction = self._build_transaction(disbursement, now)
            transaction.mark_as_processing(now, self.executor_name)
            logger.info(
                "disbursement_processing_started",
                extra={"payment_transaction_id": transaction.id, "amount": str(disbursement.amount)},
            )

            result = run_executor(
                lambda: self.executor.execute(transaction),
                operation="disbursement",
                disbursement_id=disbursement.id,
            )
            result = normalize_execution_result(transaction, result)

            done = self.clock.now()
            if result.success:
                transaction.mark_as_completed(
                    result.settled_amount or transaction.amount, result.external_reference, done,
                )
                disbursement.mark_as_completed(transaction.id, done)
            else:
                transaction.mark_as_failed(result.failure_code, result.failure_message, done)
                disbursement.mark_as_failed(result.failure_code, result.failure_message, done)
                disbursement.metadata["payment_transaction_id"] = transaction.id

            if self.payment_repository is not None:
                self.payment_repository.save(transaction)
            self.repository.save(disbursement)

            if result.success:
                self.dispatcher.dispatch(DisbursementCompletedEvent(
                    tenant_id=disbursement.tenant_id,
                    occurred_at=done,
                    disbursement_id=disbursement.id,
                    amount=disbursement.amount,
                    payment_transaction_id=transaction.id,
                    external_reference=result.external_reference,
                ))
                logger.info(
                    "disbursement_completed",
                    extra={
                        "payment_transaction_id": transaction.id,
                        "external_reference": result.external_reference,
                    },
                )
            else:
                self.dispatcher.dispatch(DisbursementFailedEvent(
                    tenant_id=disbursement.tenant_id,
                    occurred_at=done,
                    disbursement_id=disbursement.id,
                    failure_code=result.failure_code,
                    failure_message=result.failure_message,
                ))
                logger.error(
                    "disbursement_failed",
                    extra={
                        "failure_code": result.failure_code,
                        "failure_message": result.failure_message,
                    },
                )
        return result

    # ------------------------------------------------------------------
    # Other operations
    # ------------------------------------------------------------------

    def cancel(self, disbursement_id: str, actor_id: str, reason: str) -> Disbursement:
        disbursement = self.find_or_fail(disbursement_id)
        now = self.clock.now()
        disbursement.cancel(actor_id, reason, now)
        self.repository.save(disbursement)
        self.dispatcher.dispatch(DisbursementCancelledEvent(
            tenant_id=disbursement.tenant_id,
            occurred_at=now,
            disbursement_id=disbursement.id,
            cancelled_by=actor_id,
            reason=reason,
        ))
        logger.info(
            "disbursement_cancelled",
            extra={"disbursement_id": disbursement.id, "cancelled_by": actor_id, "reason": reason},
        )
        return disbursement

    def schedule(self, disbursement_id: str, scheduled_date: datetime) -> Disbursement:
        disbursement = self.find_or_fail(disbursement_id)
        disbursement.schedule(scheduled_date, self.clock.now())
        self.repository.save(disbursement)
        logger.info(
            "disbursement_scheduled",
            extra={"disbursement_id": disbursement.id, "scheduled_date": scheduled_date},
        )
        return disbursement

    def link_source_documents(self, disbursement_id: str, document_ids: list[str]) -> Disbursement:
        disbursement = self.find_or_fail(disbursement_id)
        disbursement.link_source_documents(document_ids)
        self.repository.save(disbursement)
        return disbursement
