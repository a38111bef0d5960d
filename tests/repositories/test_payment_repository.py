"""
Tests for SqlPaymentRepository.

Covers:
- Round trip of every persisted payment field
- Optimistic locking on concurrent saves
- Idempotency key storage: conflicts, tenant scoping and expiry
- update_status against the payment workflow
"""

from datetime import timedelta

import pytest

from conftest import OTHER_TENANT_ID, TEST_TENANT_ID
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.payment import PaymentStatus, PaymentTransaction
from payment_kernel.domain.values import ExchangeRateSnapshot, Money
from payment_kernel.exceptions import (
    DuplicatePaymentError,
    InvalidPaymentStatusError,
    OptimisticLockError,
    PaymentNotFoundError,
)
from payment_kernel.repositories import SqlPaymentRepository


def new_payment(clock, tenant_id=TEST_TENANT_ID, amount="100.00", **kwargs):
    return PaymentTransaction.create(
        tenant_id=tenant_id,
        reference="INV-3001",
        direction="inbound",
        amount=Money.of(amount, "USD"),
        method_type="card",
        now=clock.now(),
        payer_id="cust-1",
        **kwargs,
    )


@pytest.fixture
def repository(session, clock):
    return SqlPaymentRepository(session, clock)


class TestPaymentPersistence:

    def test_round_trip(self, repository, clock):
        payment = new_payment(clock, metadata={"order": "A-1"})
        payment.capture_exchange_rate(ExchangeRateSnapshot.capture("USD", "MYR", "4.7123", clock))
        repository.save(payment)

        loaded = repository.find_by_id(payment.id)

        assert loaded is not payment
        assert loaded.amount == payment.amount
        assert loaded.status == PaymentStatus.PENDING
        assert loaded.metadata == {"order": "A-1"}
        assert loaded.created_at == clock.now()
        assert loaded.settlement_currency == "MYR"
        assert loaded.exchange_rate == payment.exchange_rate
        assert loaded.version == 1

    def test_completed_fields(self, repository, clock):
        payment = new_payment(clock)
        repository.save(payment)
        payment.mark_as_processing(clock.now(), "Gateway")
        payment.mark_as_completed(Money.of("100.00", "USD"), "ch_123", clock.advance(seconds=5))
        repository.save(payment)

        loaded = repository.find_by_id(payment.id)
        assert loaded.status == PaymentStatus.COMPLETED
        assert loaded.settled_amount == Money.of("100.00", "USD")
        assert loaded.external_reference == "ch_123"
        assert loaded.settled_at == clock.now()
        assert loaded.attempt_count == 1
        assert loaded.version == 3

    def test_missing(self, repository):
        assert repository.find_by_id("pay_missing") is None

    def test_find_by_status(self, repository, clock):
        pending = new_payment(clock)
        draft = new_payment(clock, draft=True)
        other_tenant = new_payment(clock, tenant_id=OTHER_TENANT_ID)
        for payment in (pending, draft, other_tenant):
            repository.save(payment)

        assert [p.id for p in repository.find_by_status(PaymentStatus.DRAFT)] == [draft.id]
        found = repository.find_by_status(PaymentStatus.PENDING, TEST_TENANT_ID)
        assert [p.id for p in found] == [pending.id]


class TestOptimisticLocking:

    def test_stale_copy_rejected(self, repository, clock):
        payment = new_payment(clock)
        repository.save(payment)

        first = repository.find_by_id(payment.id)
        second = repository.find_by_id(payment.id)

        first.mark_as_cancelled("Customer request", clock.now())
        repository.save(first)

        second.mark_as_processing(clock.now())
        with pytest.raises(OptimisticLockError) as exc_info:
            repository.save(second)
        assert exc_info.value.entity_id == payment.id
        assert repository.find_by_id(payment.id).status == PaymentStatus.CANCELLED

    def test_conflict_logged(self, repository, clock, captured_logs):
        payment = new_payment(clock)
        repository.save(payment)
        stale = repository.find_by_id(payment.id)
        fresh = repository.find_by_id(payment.id)
        fresh.add_metadata({"note": "updated elsewhere"})
        repository.save(fresh)

        with pytest.raises(OptimisticLockError):
            repository.save(stale)

        [record] = [r for r in captured_logs() if r["message"] == "optimistic_lock_conflict"]
        assert record["expected_version"] == 1
        assert record["actual_version"] == 2


class TestUpdateStatus:

    def test_allowed_move(self, repository, clock):
        payment = new_payment(clock)
        repository.save(payment)

        repository.update_status(payment.id, PaymentStatus.PROCESSING)

        loaded = repository.find_by_id(payment.id)
        assert loaded.status == PaymentStatus.PROCESSING
        assert loaded.version == 2

    def test_illegal_move(self, repository, clock):
        payment = new_payment(clock)
        repository.save(payment)

        with pytest.raises(InvalidPaymentStatusError) as exc_info:
            repository.update_status(payment.id, PaymentStatus.REVERSED)
        assert exc_info.value.required_status == ("completed",)
        assert repository.find_by_id(payment.id).status == PaymentStatus.PENDING

    def test_unknown_payment(self, repository):
        with pytest.raises(PaymentNotFoundError):
            repository.update_status("pay_missing", PaymentStatus.PROCESSING)


class TestIdempotencyKeys:

    def test_save_with_key(self, repository, clock):
        key = IdempotencyKey.for_request("order-1", TEST_TENANT_ID, clock)
        payment = new_payment(clock, idempotency_key=key.value)

        repository.save_with_idempotency_key(payment, key)

        assert payment.version == 1
        assert repository.find_by_idempotency_key("order-1", TEST_TENANT_ID, clock.now()) == payment.id
        assert repository.find_by_idempotency_key("order-1", OTHER_TENANT_ID, clock.now()) is None

    def test_racing_writer_gets_duplicate_error(self, repository, clock):
        key = IdempotencyKey.for_request("order-1", TEST_TENANT_ID, clock)
        winner = new_payment(clock)
        loser = new_payment(clock)
        repository.save(winner)
        repository.save(loser)

        repository.store_idempotency_key(key, winner.id)
        with pytest.raises(DuplicatePaymentError) as exc_info:
            repository.store_idempotency_key(key, loser.id)

        assert exc_info.value.existing_payment_id == winner.id
        assert repository.find_by_idempotency_key("order-1", TEST_TENANT_ID, clock.now()) == winner.id

    def test_losing_insert_leaves_no_payment(self, repository, clock):
        key = IdempotencyKey.for_request("order-1", TEST_TENANT_ID, clock)
        repository.save_with_idempotency_key(new_payment(clock), key)
        duplicate = new_payment(clock)

        with pytest.raises(DuplicatePaymentError):
            repository.save_with_idempotency_key(duplicate, key)

        assert repository.find_by_id(duplicate.id) is None
        assert len(repository.find_by_status(PaymentStatus.PENDING)) == 1

    def test_expired_key_is_replaced(self, repository, clock):
        key = IdempotencyKey.for_request("order-1", TEST_TENANT_ID, clock, ttl_hours=1)
        first = new_payment(clock)
        repository.save_with_idempotency_key(first, key)

        clock.advance(hours=1)
        assert repository.find_by_idempotency_key("order-1", TEST_TENANT_ID, clock.now()) is None

        renewed = IdempotencyKey.for_request("order-1", TEST_TENANT_ID, clock, ttl_hours=1)
        second = new_payment(clock)
        repository.save_with_idempotency_key(second, renewed)

        assert repository.find_by_idempotency_key("order-1", TEST_TENANT_ID, clock.now()) == second.id
        assert repository.find_by_id(first.id) is not None

    def test_unexpired_key_is_kept(self, repository, clock):
        key = IdempotencyKey.for_request("order-1", TEST_TENANT_ID, clock, ttl_hours=1)
        first = new_payment(clock)
        repository.save_with_idempotency_key(first, key)

        clock.advance(minutes=59)
        with pytest.raises(DuplicatePaymentError):
            repository.store_idempotency_key(key, first.id)

    def test_key_without_expiry(self, repository, clock):
        key = IdempotencyKey("order-forever", TEST_TENANT_ID)
        payment = new_payment(clock)
        repository.save_with_idempotency_key(payment, key)

        much_later = clock.now() + timedelta(days=3650)
        assert repository.find_by_idempotency_key("order-forever", TEST_TENANT_ID, much_later) == payment.id
