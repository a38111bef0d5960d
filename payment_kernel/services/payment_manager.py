"""
PaymentManager -- orchestrates the payment transaction lifecycle.

Responsibility:
    Creates payments (idempotently), executes them through a
    PaymentExecutor, cancels, reverses and retries them.  Every status
    change goes through a PaymentTransaction mutator; the manager loads,
    mutates, saves and emits one event per change.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes the PaymentRepository,
    PaymentExecutor and EventDispatcher Protocols, PaymentValidator and a
    Clock.  Never commits: the caller owns the transaction.

Invariants enforced:
    - Validation precedes every side effect.
    - Idempotent creation: a second create() with the same unexpired key
      for the same tenant raises DuplicatePaymentError with the first
      payment's id and never reaches the executor.
    - Exactly two saves per execution attempt (PROCESSING, then the outcome).
    - Executor failures are outcomes, not exceptions: a failed result or a
      raised exception moves the payment to FAILED and is returned as an
      ExecutionResult.

Failure modes:
    - PaymentNotFoundError for an unknown payment id.
    - PaymentValidationError / InvalidPaymentMethodError for bad input.
    - InvalidPaymentStatusError for operations not allowed in the current
      status (execute, cancel, reverse, retry).
    - DuplicatePaymentError for a repeated idempotency key.
    - OptimisticLockError when another writer saved the payment first.
"""

from __future__ import annotations

from typing import Any

from payment_kernel.config import PaymentConfig
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.contracts import (
    EventDispatcher,
    ExecutionResult,
    PaymentExecutor,
    PaymentRepository,
)
from payment_kernel.domain.events import (
    PaymentCancelledEvent,
    PaymentCompletedEvent,
    PaymentCreatedEvent,
    PaymentFailedEvent,
    PaymentProcessingEvent,
    PaymentReversedEvent,
)
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.payment import (
    PaymentDirection,
    PaymentMethodType,
    PaymentStatus,
    PaymentTransaction,
)
from payment_kernel.domain.values import ExchangeRateSnapshot, Money
from payment_kernel.exceptions import (
    DuplicatePaymentError,
    InvalidPaymentStatusError,
    PaymentNotFoundError,
)
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.services.payment_validator import PaymentValidator

logger = get_logger("services.payment_manager")

EXCEPTION_FAILURE_CODE = "EXCEPTION"
MISSING_REFERENCE_FAILURE_CODE = "MISSING_EXTERNAL_REFERENCE"
SETTLEMENT_CURRENCY_FAILURE_CODE = "SETTLEMENT_CURRENCY_MISMATCH"
INVALID_SETTLED_AMOUNT_FAILURE_CODE = "INVALID_SETTLED_AMOUNT"


def run_executor(call, *, operation: str, **log_fields: Any) -> ExecutionResult:
    """Invoke an executor call and turn a raised exception into a failed result."""
    try:
        return call()
    except Exception as exc:
        logger.exception(
            "payment_executor_raised",
            extra={"operation": operation, "error_type": type(exc).__name__, **log_fields},
        )
        return ExecutionResult.failed(EXCEPTION_FAILURE_CODE, str(exc) or type(exc).__name__)


def normalize_execution_result(payment: PaymentTransaction, result: ExecutionResult) -> ExecutionResult:
    """
    Downgrade success results that cannot complete ``payment`` to failures.

    Every check ``PaymentTransaction.mark_as_completed`` makes on executor
    output is repeated here, so a normalized success always completes.
    """
    if not result.success:
        return ExecutionResult.failed(result.failure_code, result.failure_message)
    if not result.external_reference or not str(result.external_reference).strip():
        return ExecutionResult.failed(
            MISSING_REFERENCE_FAILURE_CODE,
            "Executor reported success without an external transaction reference",
        )
    settled = result.settled_amount
    if settled is not None and settled.currency.code != payment.settlement_currency:
        return ExecutionResult.failed(
            SETTLEMENT_CURRENCY_FAILURE_CODE,
            f"Executor settled in {settled.currency.code}, "
            f"expected {payment.settlement_currency}",
        )
    if settled is not None and settled.is_negative:
        return ExecutionResult.failed(
            INVALID_SETTLED_AMOUNT_FAILURE_CODE,
            f"Executor reported a negative settled amount: {settled}",
        )
    return result


class PaymentManager:
    """
    Payment lifecycle orchestration.

    Contract:
        Collaborators are injected; ``clock`` defaults to SystemClock and
        ``validator`` to a PaymentValidator built from ``config``.
        ``executor_name`` is recorded on each execution attempt.

    Guarantees:
        - Every state change is saved before its event is dispatched.
        - A rejected operation leaves the persisted payment unchanged.

    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT retry executor calls on its own; callers decide when to
          call ``retry``.
    """

    def __init__(
        self,
        repository: PaymentRepository,
        executor: PaymentExecutor,
        dispatcher: EventDispatcher,
        clock: Clock | None = None,
        config: PaymentConfig | None = None,
        validator: PaymentValidator | None = None,
        executor_name: str | None = None,
    ):
        self.repository = repository
        self.executor = executor
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()
        self.config = config or PaymentConfig()
        self.validator = validator or PaymentValidator(self.config)
        self.executor_name = executor_name or type(executor).__name__

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_or_fail(self, payment_id: str) -> PaymentTransaction:
        payment = self.repository.find_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment

    def get_status(self, payment_id: str) -> PaymentStatus:
        return self.find_or_fail(payment_id).status

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _resolve_idempotency_key(
        self, idempotency_key: str | IdempotencyKey, tenant_id: str,
    ) -> IdempotencyKey:
        if isinstance(idempotency_key, IdempotencyKey):
            key = idempotency_key
        else:
            key = IdempotencyKey.for_request(
                idempotency_key, tenant_id, self.clock, self.config.idempotency_ttl_hours,
            )
        self.validator.validate_idempotency_key(key, tenant_id, self.clock.now())
        return key

    def create(
        self,
        tenant_id: str,
        reference: str,
        direction: PaymentDirection | str,
        amount: Money,
        method_type: PaymentMethodType | str,
        payer_id: str | None = None,
        payee_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | IdempotencyKey | None = None,
        draft: bool = False,
    ) -> PaymentTransaction:
        """
        Create a payment in PENDING (or DRAFT) status.

        Raises:
            PaymentValidationError: Input failed a business rule.
            DuplicatePaymentError: ``idempotency_key`` already maps to a
                payment for this tenant.
        """
        parsed_direction, parsed_method = self.validator.validate_create(
            tenant_id=tenant_id,
            reference=reference,
            direction=direction,
            amount=amount,
            method_type=method_type,
            payer_id=payer_id,
            payee_id=payee_id,
        )

        key = None
        if idempotency_key is not None:
            key = self._resolve_idempotency_key(idempotency_key, tenant_id)
            existing = self.repository.find_by_idempotency_key(key.value, tenant_id, self.clock.now())
            if existing is not None:
                logger.warning(
                    "payment_duplicate_rejected",
                    extra={
                        "tenant_id": tenant_id,
                        "idempotency_key": key.value,
                        "existing_payment_id": existing,
                    },
                )
                raise DuplicatePaymentError(key.value, existing, tenant_id)

        now = self.clock.now()
        payment = PaymentTransaction.create(
            tenant_id=tenant_id,
            reference=reference.strip(),
            direction=parsed_direction,
            amount=amount,
            method_type=parsed_method,
            now=now,
            payer_id=payer_id,
            payee_id=payee_id,
            metadata=metadata,
            idempotency_key=key.value if key else None,
            draft=draft,
        )

        with LogContext.bind(tenant_id=tenant_id, payment_id=payment.id):
            if key is not None:
                self.repository.save_with_idempotency_key(payment, key)
            else:
                self.repository.save(payment)

            self.dispatcher.dispatch(PaymentCreatedEvent(
                tenant_id=tenant_id,
                occurred_at=now,
                payment_id=payment.id,
                amount=payment.amount,
                direction=payment.direction.value,
                reference=payment.reference,
                method_type=payment.method_type.value,
                idempotency_key=payment.idempotency_key,
            ))
            logger.info(
                "payment_created",
                extra={
                    "amount": str(payment.amount),
                    "direction": payment.direction.value,
                    "method_type": payment.method_type.value,
                    "status": payment.status.value,
                },
            )
        return payment

    def capture_exchange_rate(self, payment_id: str, snapshot: ExchangeRateSnapshot) -> PaymentTransaction:
        """Fix the settlement currency and rate before execution."""
        payment = self.find_or_fail(payment_id)
        payment.capture_exchange_rate(snapshot)
        self.repository.save(payment)
        logger.info(
            "payment_exchange_rate_captured",
            extra={"payment_id": payment.id, "rate": str(snapshot)},
        )
        return payment

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, payment_id: str) -> ExecutionResult:
        """Run a PENDING payment through the executor."""
        payment = self.find_or_fail(payment_id)
        self.validator.validate_for_execution(payment)
        return self._run_execution(payment)

    def retry(self, payment_id: str) -> ExecutionResult:
        """Run a FAILED payment through the executor again."""
        payment = self.find_or_fail(payment_id)
        if payment.status != PaymentStatus.FAILED:
            raise InvalidPaymentStatusError(
                current_status=payment.status,
                required_status=PaymentStatus.FAILED,
                message="Only failed payments can be retried",
                payment_id=payment.id,
            )
        logger.info(
            "payment_retry_requested",
            extra={"payment_id": payment.id, "previous_attempts": payment.attempt_count},
        )
        return self._run_execution(payment)

    def _run_execution(self, payment: PaymentTransaction) -> ExecutionResult:
        with LogContext.bind(tenant_id=payment.tenant_id, payment_id=payment.id):
            payment.mark_as_processing(self.clock.now(), self.executor_name)
            self.repository.save(payment)
            self.dispatcher.dispatch(PaymentProcessingEvent(
                tenant_id=payment.tenant_id,
                occurred_at=payment.processed_at,
                payment_id=payment.id,
                attempt=payment.attempt_count,
                executor_name=self.executor_name,
            ))
            logger.info(
                "payment_execution_started",
                extra={"attempt": payment.attempt_count, "executor": self.executor_name},
            )

            result = run_executor(
                lambda: self.executor.execute(payment),
                operation="execute",
                payment_id=payment.id,
            )
            result = normalize_execution_result(payment, result)

            now = self.clock.now()
            if result.success:
                settled = result.settled_amount or payment.expected_settlement_amount
                payment.mark_as_completed(settled, result.external_reference, now)
                self.repository.save(payment)
                self.dispatcher.dispatch(PaymentCompletedEvent(
                    tenant_id=payment.tenant_id,
                    occurred_at=now,
                    payment_id=payment.id,
                    amount=payment.amount,
                    settled_amount=settled,
                    external_reference=payment.external_reference,
                ))
                logger.info(
                    "payment_execution_completed",
                    extra={
                        "settled_amount": str(settled),
                        "external_reference": payment.external_reference,
                    },
                )
            else:
                payment.mark_as_failed(result.failure_code, result.failure_message, now)
                self.repository.save(payment)
                self.dispatcher.dispatch(PaymentFailedEvent(
                    tenant_id=payment.tenant_id,
                    occurred_at=now,
                    payment_id=payment.id,
                    failure_code=payment.failure_code,
                    failure_message=payment.failure_message,
                    attempt=payment.attempt_count,
                ))
                logger.warning(
                    "payment_execution_failed",
                    extra={
                        "failure_code": payment.failure_code,
                        "failure_message": payment.failure_message,
                        "attempt": payment.attempt_count,
                    },
                )
        return result

    # ------------------------------------------------------------------
    # Cancellation and reversal
    # ------------------------------------------------------------------

    def cancel(
        self,
        payment_id: str,
        reason: str,
        cancelled_by: str | None = None,
    ) -> PaymentTransaction:
        payment = self.find_or_fail(payment_id)
        now = self.clock.now()
        payment.mark_as_cancelled(reason, now, cancelled_by)
        self.repository.save(payment)
        self.dispatcher.dispatch(PaymentCancelledEvent(
            tenant_id=payment.tenant_id,
            occurred_at=now,
            payment_id=payment.id,
            reason=reason,
            cancelled_by=cancelled_by,
        ))
        logger.info(
            "payment_cancelled",
            extra={"payment_id": payment.id, "reason": reason, "cancelled_by": cancelled_by},
        )
        return payment

    def reverse(
        self,
        payment_id: str,
        amount: Money | None = None,
        reason: str | None = None,
    ) -> ExecutionResult:
        """
        Refund a COMPLETED payment in full or in part.

        A failed refund leaves the payment COMPLETED, records the failure
        under ``metadata["last_refund_failure"]`` and returns the result.

        Raises:
            InvalidPaymentStatusError: Payment is not COMPLETED.
            InvalidPaymentMethodError: Method type does not support reversals.
            PaymentValidationError: Amount is not positive or exceeds the
                original amount.
        """
        payment = self.find_or_fail(payment_id)
        refund_amount = payment.check_reversal(amount)

        with LogContext.bind(tenant_id=payment.tenant_id, payment_id=payment.id):
            result = run_executor(
                lambda: self.executor.refund(payment.id, refund_amount, reason),
                operation="refund",
                payment_id=payment.id,
            )
            now = self.clock.now()
            if result.success:
                payment.mark_as_reversed(now, refund_amount, reason, result.external_reference)
                self.repository.save(payment)
                self.dispatcher.dispatch(PaymentReversedEvent(
                    tenant_id=payment.tenant_id,
                    occurred_at=now,
                    payment_id=payment.id,
                    reversed_amount=refund_amount,
                    reason=reason,
                    external_reference=result.external_reference,
                ))
                logger.info(
                    "payment_reversed",
                    extra={
                        "reversed_amount": str(refund_amount),
                        "partial": payment.is_partially_reversed,
                        "reason": reason,
                    },
                )
            else:
                payment.add_metadata({
                    "last_refund_failure": {
                        "code": result.failure_code,
                        "message": result.failure_message,
                        "amount": str(refund_amount),
                        "attempted_at": now.isoformat(),
                    }
                })
                self.repository.save(payment)
                logger.warning(
                    "payment_reversal_failed",
                    extra={
                        "failure_code": result.failure_code,
                        "failure_message": result.failure_message,
                        "amount": str(refund_amount),
                    },
                )
        return result
