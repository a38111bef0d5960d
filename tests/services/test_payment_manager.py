"""
Tests for PaymentManager.

Covers:
- Creation, validation and idempotency keys (duplicates, tenants, expiry)
- Execution outcomes, including executor exceptions and malformed results
- Retry, cancellation and reversal (full, partial, failed refunds)
- Events dispatched per state change and the two-save execution contract
"""

import pytest

from conftest import OTHER_TENANT_ID, TEST_TENANT_ID
from payment_kernel.config import PaymentConfig
from payment_kernel.domain.contracts import ExecutionResult
from payment_kernel.domain.events import (
    PaymentCancelledEvent,
    PaymentCompletedEvent,
    PaymentCreatedEvent,
    PaymentFailedEvent,
    PaymentProcessingEvent,
    PaymentReversedEvent,
)
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.payment import PaymentStatus
from payment_kernel.domain.values import ExchangeRateSnapshot, Money
from payment_kernel.exceptions import (
    DuplicatePaymentError,
    InvalidPaymentMethodError,
    InvalidPaymentStatusError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from payment_kernel.repositories import SqlPaymentRepository
from payment_kernel.services import PaymentManager, PaymentValidator


def create_inbound(manager, amount, /, **kwargs):
    params = {
        "tenant_id": TEST_TENANT_ID,
        "reference": "INV-1001",
        "direction": "inbound",
        "amount": amount,
        "method_type": "card",
        "payer_id": "cust-1",
    }
    params.update(kwargs)
    return manager.create(**params)


class CountingPaymentRepository(SqlPaymentRepository):
    """Counts save() calls per payment id."""

    def __init__(self, session, clock):
        super().__init__(session, clock)
        self.saves: list[str] = []

    def save(self, entity):
        self.saves.append(entity.id)
        return super().save(entity)


class TestPaymentCreation:

    def test_create_pending_payment(self, payment_manager, dispatcher, usd):
        payment = create_inbound(payment_manager, usd("100.00"))

        assert payment.status == PaymentStatus.PENDING
        assert payment.id.startswith("pay_")
        assert payment.version == 1

        stored = payment_manager.find_or_fail(payment.id)
        assert stored.amount == usd("100.00")
        assert stored.payer_id == "cust-1"

        [event] = dispatcher.events
        assert isinstance(event, PaymentCreatedEvent)
        assert event.payment_id == payment.id
        assert event.event_type == "payment.created"

    def test_create_draft(self, payment_manager, usd):
        payment = create_inbound(payment_manager, usd("10.00"), draft=True)
        assert payment_manager.get_status(payment.id) == PaymentStatus.DRAFT

    def test_reference_is_trimmed(self, payment_manager, usd):
        payment = create_inbound(payment_manager, usd("10.00"), reference="  INV-9  ")
        assert payment.reference == "INV-9"

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"amount": Money.of("0", "USD")}, "Payment amount must be positive"),
            ({"amount": Money.of("-5", "USD")}, "Payment amount must be positive"),
            ({"amount": Money.of("10000000.01", "USD")}, "cannot exceed 10000000 USD"),
            ({"reference": "AB"}, "at least 3 characters"),
            ({"reference": "X" * 51}, "cannot exceed 50 characters"),
            ({"payer_id": None}, "Payer ID is required for inbound payments"),
            ({"direction": "sideways"}, "Invalid payment direction"),
            ({"tenant_id": ""}, "Field 'tenant_id' is required"),
        ],
    )
    def test_validation_errors(self, payment_manager, dispatcher, usd, overrides, message):
        with pytest.raises(PaymentValidationError, match=message):
            create_inbound(payment_manager, usd("10.00"), **overrides)
        assert dispatcher.events == []

    def test_minimum_amount(self, usd):
        validator = PaymentValidator(PaymentConfig(min_payment_amount="1.00"))

        with pytest.raises(PaymentValidationError, match="at least 1.00 USD"):
            validator.validate_amount(usd("0.99"))
        validator.validate_amount(usd("1.00"))

    def test_amount_bounds_ignore_currency(self):
        validator = PaymentValidator(PaymentConfig())

        validator.validate_amount(Money.of("10000000", "JPY"))
        with pytest.raises(PaymentValidationError, match="cannot exceed 10000000 JPY"):
            validator.validate_amount(Money.of("10000001", "JPY"))

    def test_outbound_requires_payee(self, payment_manager, usd):
        with pytest.raises(PaymentValidationError) as exc_info:
            payment_manager.create(
                TEST_TENANT_ID, "PO-1", "outbound", usd("10.00"), "bank_transfer",
            )
        assert exc_info.value.field == "payee_id"

    def test_unknown_method_type(self, payment_manager, usd):
        with pytest.raises(InvalidPaymentMethodError):
            create_inbound(payment_manager, usd("10.00"), method_type="barter")

    def test_not_found(self, payment_manager):
        with pytest.raises(PaymentNotFoundError, match="pay_missing"):
            payment_manager.execute("pay_missing")


class TestIdempotency:

    def test_duplicate_key_rejected(self, payment_manager, executor, usd):
        first = create_inbound(payment_manager, usd("50.00"), idempotency_key="order-42")

        with pytest.raises(DuplicatePaymentError) as exc_info:
            create_inbound(payment_manager, usd("50.00"), idempotency_key="order-42")

        assert exc_info.value.existing_payment_id == first.id
        assert exc_info.value.idempotency_key == "order-42"
        assert executor.executed == []
        assert len(payment_manager.repository.find_by_status(PaymentStatus.PENDING)) == 1

    def test_duplicate_logged(self, payment_manager, usd, captured_logs):
        create_inbound(payment_manager, usd("50.00"), idempotency_key="order-42")
        with pytest.raises(DuplicatePaymentError):
            create_inbound(payment_manager, usd("50.00"), idempotency_key="order-42")

        [record] = [r for r in captured_logs() if r["message"] == "payment_duplicate_rejected"]
        assert record["level"] == "WARNING"
        assert record["idempotency_key"] == "order-42"

    def test_keys_are_tenant_scoped(self, payment_manager, usd):
        a = create_inbound(payment_manager, usd("50.00"), idempotency_key="order-42")
        b = create_inbound(
            payment_manager, usd("50.00"), idempotency_key="order-42", tenant_id=OTHER_TENANT_ID,
        )
        assert a.id != b.id

    def test_expired_key_can_be_reused(self, payment_manager, clock, usd):
        first = create_inbound(payment_manager, usd("50.00"), idempotency_key="order-42")
        clock.advance(hours=24)

        second = create_inbound(payment_manager, usd("50.00"), idempotency_key="order-42")

        assert second.id != first.id
        found = payment_manager.repository.find_by_idempotency_key(
            "order-42", TEST_TENANT_ID, clock.now(),
        )
        assert found == second.id

    def test_key_for_other_tenant_rejected(self, payment_manager, clock, usd):
        key = IdempotencyKey.for_request("order-42", OTHER_TENANT_ID, clock)
        with pytest.raises(PaymentValidationError, match="different tenant"):
            create_inbound(payment_manager, usd("50.00"), idempotency_key=key)

    def test_expired_key_object_rejected(self, payment_manager, clock, usd):
        key = IdempotencyKey.for_request("order-42", TEST_TENANT_ID, clock, ttl_hours=1)
        clock.advance(hours=2)
        with pytest.raises(PaymentValidationError, match="expired"):
            create_inbound(payment_manager, usd("50.00"), idempotency_key=key)

    def test_key_recorded_on_payment(self, payment_manager, usd):
        payment = create_inbound(payment_manager, usd("50.00"), idempotency_key="order-7")
        assert payment_manager.find_or_fail(payment.id).idempotency_key == "order-7"


class TestExecution:

    def test_successful_execution(self, payment_manager, executor, dispatcher, usd):
        payment = create_inbound(payment_manager, usd("100.00"))

        result = payment_manager.execute(payment.id)

        assert result.success
        assert result.external_reference == "ext-0001"
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.settled_amount == usd("100.00")
        assert stored.external_reference == "ext-0001"
        assert stored.attempt_count == 1
        assert stored.executor_name == "FakeExecutor"
        assert [type(e) for e in dispatcher.events] == [
            PaymentCreatedEvent,
            PaymentProcessingEvent,
            PaymentCompletedEvent,
        ]

    def test_exactly_two_saves_per_attempt(self, session, executor, dispatcher, clock, usd):
        repository = CountingPaymentRepository(session, clock)
        manager = PaymentManager(repository, executor, dispatcher, clock)
        payment = create_inbound(manager, usd("100.00"))
        repository.saves.clear()

        manager.execute(payment.id)

        assert repository.saves == [payment.id, payment.id]
        assert manager.find_or_fail(payment.id).version == 3

    def test_executor_sees_processing_payment(self, payment_manager, executor, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        payment_manager.execute(payment.id)
        [seen] = executor.executed
        assert seen.id == payment.id
        assert seen.attempt_count == 1

    def test_failed_execution(self, payment_manager, executor, dispatcher, usd):
        executor.results = [ExecutionResult.failed("CARD_DECLINED", "Card declined")]
        payment = create_inbound(payment_manager, usd("100.00"))

        result = payment_manager.execute(payment.id)

        assert not result.success
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.status == PaymentStatus.FAILED
        assert stored.failure_code == "CARD_DECLINED"
        assert stored.failure_message == "Card declined"
        [failed] = dispatcher.events_of_type(PaymentFailedEvent)
        assert failed.attempt == 1

    def test_executor_exception_becomes_failure(self, payment_manager, executor, usd, captured_logs):
        executor.execute_error = RuntimeError("gateway timeout")
        payment = create_inbound(payment_manager, usd("100.00"))

        result = payment_manager.execute(payment.id)

        assert not result.success
        assert result.failure_code == "EXCEPTION"
        assert result.failure_message == "gateway timeout"
        assert payment_manager.get_status(payment.id) == PaymentStatus.FAILED

        [record] = [r for r in captured_logs() if r["message"] == "payment_executor_raised"]
        assert record["exc_type"] == "RuntimeError"
        assert record["payment_id"] == payment.id

    def test_success_without_reference_is_failure(self, payment_manager, executor, usd):
        executor.results = [ExecutionResult(success=True)]
        payment = create_inbound(payment_manager, usd("100.00"))

        result = payment_manager.execute(payment.id)

        assert result.failure_code == "MISSING_EXTERNAL_REFERENCE"
        assert payment_manager.get_status(payment.id) == PaymentStatus.FAILED

    def test_settlement_in_wrong_currency_is_failure(self, payment_manager, executor, clock, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        payment_manager.capture_exchange_rate(
            payment.id, ExchangeRateSnapshot.capture("USD", "EUR", "0.9", clock),
        )
        executor.results = [ExecutionResult.succeeded("ext-9", usd("100.00"))]

        result = payment_manager.execute(payment.id)

        assert result.failure_code == "SETTLEMENT_CURRENCY_MISMATCH"
        assert "expected EUR" in result.failure_message
        assert payment_manager.get_status(payment.id) == PaymentStatus.FAILED

    def test_negative_settled_amount_is_failure(self, payment_manager, executor, dispatcher, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        executor.results = [ExecutionResult.succeeded("ext-1", usd("-5.00"))]

        result = payment_manager.execute(payment.id)

        assert not result.success
        assert result.failure_code == "INVALID_SETTLED_AMOUNT"
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.status == PaymentStatus.FAILED
        assert stored.settled_amount is None
        assert len(dispatcher.events_of_type(PaymentFailedEvent)) == 1

    def test_payment_failed_on_bad_settlement_can_be_retried(self, payment_manager, executor, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        executor.results = [ExecutionResult.succeeded("ext-1", usd("-5.00"))]
        payment_manager.execute(payment.id)

        result = payment_manager.retry(payment.id)

        assert result.success
        assert payment_manager.get_status(payment.id) == PaymentStatus.COMPLETED

    def test_cross_currency_settles_at_captured_rate(self, payment_manager, clock, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        payment_manager.capture_exchange_rate(
            payment.id, ExchangeRateSnapshot.capture("USD", "EUR", "0.9", clock),
        )

        payment_manager.execute(payment.id)

        stored = payment_manager.find_or_fail(payment.id)
        assert stored.settlement_currency == "EUR"
        assert stored.settled_amount == Money.of("90.00", "EUR")

    def test_only_pending_payments_execute(self, payment_manager, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        payment_manager.execute(payment.id)

        with pytest.raises(InvalidPaymentStatusError, match="Only pending payments can be executed") as exc_info:
            payment_manager.execute(payment.id)
        assert exc_info.value.current_status == "completed"

    def test_draft_cannot_execute(self, payment_manager, executor, usd):
        payment = create_inbound(payment_manager, usd("100.00"), draft=True)
        with pytest.raises(InvalidPaymentStatusError):
            payment_manager.execute(payment.id)
        assert executor.executed == []


class TestRetry:

    def test_retry_failed_payment(self, payment_manager, executor, usd):
        executor.results = [ExecutionResult.failed("TIMEOUT", "Processor timed out")]
        payment = create_inbound(payment_manager, usd("100.00"))
        payment_manager.execute(payment.id)

        result = payment_manager.retry(payment.id)

        assert result.success
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.attempt_count == 2
        assert stored.failure_code is None

    def test_retry_completed_payment_rejected(self, payment_manager, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        payment_manager.execute(payment.id)

        with pytest.raises(InvalidPaymentStatusError, match="Only failed payments can be retried") as exc_info:
            payment_manager.retry(payment.id)
        assert exc_info.value.required_status == ("failed",)


class TestCancellation:

    def test_cancel_pending(self, payment_manager, dispatcher, usd):
        payment = create_inbound(payment_manager, usd("100.00"))

        cancelled = payment_manager.cancel(payment.id, "Customer request", "user-9")

        assert cancelled.status == PaymentStatus.CANCELLED
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.metadata["cancellation_reason"] == "Customer request"
        assert stored.metadata["cancelled_by"] == "user-9"
        [event] = dispatcher.events_of_type(PaymentCancelledEvent)
        assert event.reason == "Customer request"

    def test_cancel_draft(self, payment_manager, usd):
        payment = create_inbound(payment_manager, usd("100.00"), draft=True)
        payment_manager.cancel(payment.id, "Abandoned")
        assert payment_manager.get_status(payment.id) == PaymentStatus.CANCELLED

    def test_completed_cannot_be_cancelled(self, payment_manager, usd):
        payment = create_inbound(payment_manager, usd("100.00"))
        payment_manager.execute(payment.id)

        with pytest.raises(InvalidPaymentStatusError, match="completed cannot be cancelled"):
            payment_manager.cancel(payment.id, "Too late")
        assert payment_manager.get_status(payment.id) == PaymentStatus.COMPLETED


class TestReversal:

    def setup_method(self):
        self.amount = Money.of("100.00", "USD")

    def _completed(self, manager):
        payment = create_inbound(manager, self.amount)
        manager.execute(payment.id)
        return payment

    def test_full_reversal(self, payment_manager, executor, dispatcher):
        payment = self._completed(payment_manager)

        result = payment_manager.reverse(payment.id, reason="Chargeback")

        assert result.success
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.status == PaymentStatus.REVERSED
        assert stored.reversed_amount == self.amount
        assert not stored.is_partially_reversed
        assert stored.metadata["reversal_reason"] == "Chargeback"
        assert stored.metadata["reversal_transaction_id"] == "rfd-0001"
        assert executor.refunds == [(payment.id, self.amount, "Chargeback")]
        [event] = dispatcher.events_of_type(PaymentReversedEvent)
        assert event.reversed_amount == self.amount

    def test_partial_reversal(self, payment_manager):
        payment = self._completed(payment_manager)
        payment_manager.reverse(payment.id, Money.of("40.00", "USD"))
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.reversed_amount == Money.of("40.00", "USD")
        assert stored.is_partially_reversed

    def test_reversal_above_amount_rejected(self, payment_manager, executor):
        payment = self._completed(payment_manager)
        with pytest.raises(PaymentValidationError, match="cannot exceed original payment amount"):
            payment_manager.reverse(payment.id, Money.of("150.00", "USD"))
        assert executor.refunds == []
        assert payment_manager.get_status(payment.id) == PaymentStatus.COMPLETED

    def test_pending_cannot_be_reversed(self, payment_manager):
        payment = create_inbound(payment_manager, self.amount)
        with pytest.raises(InvalidPaymentStatusError, match="Only completed payments can be reversed"):
            payment_manager.reverse(payment.id)

    def test_cash_cannot_be_reversed(self, payment_manager):
        payment = create_inbound(payment_manager, self.amount, method_type="cash")
        payment_manager.execute(payment.id)
        with pytest.raises(InvalidPaymentMethodError, match="does not support reversals"):
            payment_manager.reverse(payment.id)

    def test_failed_refund_recorded(self, payment_manager, executor, dispatcher):
        payment = self._completed(payment_manager)
        executor.refund_results = [ExecutionResult.failed("REFUND_DECLINED", "Refund window closed")]

        result = payment_manager.reverse(payment.id)

        assert not result.success
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.status == PaymentStatus.COMPLETED
        failure = stored.metadata["last_refund_failure"]
        assert failure["code"] == "REFUND_DECLINED"
        assert failure["amount"] == "100.00 USD"
        assert dispatcher.events_of_type(PaymentReversedEvent) == []

    def test_refund_exception_recorded(self, payment_manager, executor):
        payment = self._completed(payment_manager)
        executor.refund_error = ConnectionError("processor unreachable")

        result = payment_manager.reverse(payment.id)

        assert result.failure_code == "EXCEPTION"
        stored = payment_manager.find_or_fail(payment.id)
        assert stored.metadata["last_refund_failure"]["message"] == "processor unreachable"
