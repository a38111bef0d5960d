"""
SettlementManager -- groups completed payments into processor settlement batches.

Responsibility:
    Opens batches, adds and removes completed payments while a batch is
    OPEN, closes it (fixing the expected payout), and records the
    processor's actual payout or a dispute.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes the
    SettlementBatchRepository and PaymentRepository Protocols.

Invariants enforced:
    - Only COMPLETED payments of the batch tenant are settled, at their
      settled amount.
    - A payment is in at most one OPEN batch at a time.
    - Batch contents change only while OPEN (enforced by SettlementBatch).

Failure modes:
    - SettlementBatchNotFoundError / PaymentNotFoundError for unknown ids.
    - PaymentValidationError when the payment belongs to another tenant.
    - InvalidPaymentStatusError when the payment is not COMPLETED.
    - PaymentAlreadyBatchedError when another OPEN batch holds the payment.
    - InvalidSettlementBatchStatusError / CurrencyMismatchError from the batch.
"""

from __future__ import annotations

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.contracts import (
    EventDispatcher,
    PaymentRepository,
    SettlementBatchRepository,
)
from payment_kernel.domain.events import (
    SettlementBatchClosedEvent,
    SettlementBatchDisputedEvent,
    SettlementBatchOpenedEvent,
    SettlementBatchReconciledEvent,
)
from payment_kernel.domain.payment import PaymentStatus
from payment_kernel.domain.settlement import SettlementBatch
from payment_kernel.domain.values import Money
from payment_kernel.exceptions import (
    InvalidPaymentStatusError,
    PaymentAlreadyBatchedError,
    PaymentNotFoundError,
    PaymentValidationError,
    SettlementBatchNotFoundError,
)
from payment_kernel.logging_config import get_logger

logger = get_logger("services.settlement_manager")


class SettlementManager:
    """Settlement batch orchestration over injected repositories."""

    def __init__(
        self,
        repository: SettlementBatchRepository,
        payment_repository: PaymentRepository,
        dispatcher: EventDispatcher,
        clock: Clock | None = None,
    ):
        self.repository = repository
        self.payment_repository = payment_repository
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()

    def find_or_fail(self, batch_id: str) -> SettlementBatch:
        batch = self.repository.find_by_id(batch_id)
        if batch is None:
            raise SettlementBatchNotFoundError(batch_id)
        return batch

    def open_batch(self, tenant_id: str, processor_id: str, currency: str) -> SettlementBatch:
        now = self.clock.now()
        batch = SettlementBatch.open(tenant_id, processor_id, currency, now)
        self.repository.save(batch)
        self.dispatcher.dispatch(SettlementBatchOpenedEvent(
            tenant_id=tenant_id,
            occurred_at=now,
            batch_id=batch.id,
            processor_id=processor_id,
            currency=batch.currency,
        ))
        logger.info(
            "settlement_batch_opened",
            extra={"batch_id": batch.id, "processor_id": processor_id, "currency": batch.currency},
        )
        return batch

    def add_payment(self, batch_id: str, payment_id: str, fee: Money | None = None) -> SettlementBatch:
        """
        Add a completed payment to an open batch.

        Adding a payment that is already in this batch is a no-op.
        """
        batch = self.find_or_fail(batch_id)
        payment = self.payment_repository.find_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        if payment.tenant_id != batch.tenant_id:
            raise PaymentValidationError(
                f"Payment {payment.id} belongs to a different tenant than batch {batch.id}",
                field="tenant_id",
            )
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidPaymentStatusError(
                current_status=payment.status,
                required_status=PaymentStatus.COMPLETED,
                message="Only completed payments can be settled",
                payment_id=payment.id,
            )

        holder = self.repository.find_open_batch_for_payment(payment_id)
        if holder is not None and holder.id != batch.id:
            raise PaymentAlreadyBatchedError(payment_id, holder.id)

        if batch.add_payment(payment.id, payment.settled_amount or payment.amount, fee):
            self.repository.save(batch)
            logger.info(
                "settlement_batch_payment_added",
                extra={
                    "batch_id": batch.id,
                    "payment_id": payment.id,
                    "payment_count": batch.payment_count,
                },
            )
        return batch

    def remove_payment(self, batch_id: str, payment_id: str) -> SettlementBatch:
        batch = self.find_or_fail(batch_id)
        if batch.remove_payment(payment_id):
            self.repository.save(batch)
            logger.info(
                "settlement_batch_payment_removed",
                extra={"batch_id": batch.id, "payment_id": payment_id},
            )
        return batch

    def close_batch(self, batch_id: str) -> SettlementBatch:
        batch = self.find_or_fail(batch_id)
        now = self.clock.now()
        batch.close(now)
        self.repository.save(batch)
        self.dispatcher.dispatch(SettlementBatchClosedEvent(
            tenant_id=batch.tenant_id,
            occurred_at=now,
            batch_id=batch.id,
            payment_count=batch.payment_count,
            gross_amount=batch.gross_amount,
            net_amount=batch.net_amount,
        ))
        logger.info(
            "settlement_batch_closed",
            extra={
                "batch_id": batch.id,
                "payment_count": batch.payment_count,
                "gross_amount": str(batch.gross_amount),
                "net_amount": str(batch.net_amount),
            },
        )
        return batch

    def reconcile(
        self,
        batch_id: str,
        actual_amount: Money,
        processor_reference: str | None = None,
    ) -> SettlementBatch:
        batch = self.find_or_fail(batch_id)
        now = self.clock.now()
        batch.reconcile(actual_amount, now, processor_reference)
        self.repository.save(batch)
        self.dispatcher.dispatch(SettlementBatchReconciledEvent(
            tenant_id=batch.tenant_id,
            occurred_at=now,
            batch_id=batch.id,
            expected_amount=batch.expected_settlement_amount,
            actual_amount=actual_amount,
            discrepancy=batch.discrepancy_amount,
        ))
        log = logger.warning if batch.has_discrepancy() else logger.info
        log(
            "settlement_batch_reconciled",
            extra={
                "batch_id": batch.id,
                "expected_amount": str(batch.expected_settlement_amount),
                "actual_amount": str(actual_amount),
                "discrepancy": str(batch.discrepancy_amount),
            },
        )
        return batch

    def mark_disputed(self, batch_id: str, reason: str) -> SettlementBatch:
        batch = self.find_or_fail(batch_id)
        now = self.clock.now()
        batch.mark_disputed(reason, now)
        self.repository.save(batch)
        self.dispatcher.dispatch(SettlementBatchDisputedEvent(
            tenant_id=batch.tenant_id,
            occurred_at=now,
            batch_id=batch.id,
            reason=reason,
        ))
        logger.warning("settlement_batch_disputed", extra={"batch_id": batch.id, "reason": reason})
        return batch
