"""
Typed exception hierarchy for the payment kernel.

Every error the kernel raises is a typed subclass of PaymentEngineError
carrying a machine-readable ``code`` class attribute and its context as
structured attributes.  Callers catch by type and read attributes, never
parse messages:

    try:
        manager.reverse(payment_id, amount=Money.of("150.00", "USD"))
    except PaymentValidationError as e:
        api_response(code=e.code, field=e.field)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PaymentEngineError (base)
    |
    +-- NotFoundError
    |   +-- PaymentNotFoundError
    |   +-- DisbursementNotFoundError
    |   +-- SettlementBatchNotFoundError
    |
    +-- ValidationError
    |   +-- PaymentValidationError
    |   +-- InvalidPaymentMethodError
    |   +-- InvalidRecipientInfoError
    |   +-- InvalidScheduleError
    |
    +-- StatusError
    |   +-- InvalidPaymentStatusError
    |   +-- InvalidDisbursementStatusError
    |   +-- InvalidSettlementBatchStatusError
    |
    +-- DuplicateError
    |   +-- DuplicatePaymentError
    |   +-- PaymentAlreadyBatchedError
    |
    +-- AllocationError
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |   +-- CurrencyConversionError
    |
    +-- LimitError
    |   +-- DisbursementLimitExceededError
    |
    +-- ConcurrencyError
        +-- OptimisticLockError

Executor failures are NOT exceptions: they are recorded on the payment or
disbursement (FAILED status, failure code/message) and reported through
the returned ExecutionResult and emitted events.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


def _status_value(status: Any) -> Any:
    if isinstance(status, Enum):
        return status.value
    if isinstance(status, (tuple, list, frozenset, set)):
        return tuple(sorted(_status_value(s) for s in status))
    return status


class PaymentEngineError(Exception):
    """
    Base exception for all payment kernel errors.

    All subclasses define a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYMENT_ENGINE_ERROR"


# Not-found exceptions


class NotFoundError(PaymentEngineError):
    """Base exception for lookups that found nothing."""

    code: str = "NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    """Payment transaction with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class DisbursementNotFoundError(NotFoundError):
    """Disbursement with given ID was not found."""

    code: str = "DISBURSEMENT_NOT_FOUND"

    def __init__(self, disbursement_id: str):
        self.disbursement_id = disbursement_id
        super().__init__(f"Disbursement not found: {disbursement_id}")


class SettlementBatchNotFoundError(NotFoundError):
    """Settlement batch with given ID was not found."""

    code: str = "SETTLEMENT_BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Settlement batch not found: {batch_id}")


# Validation exceptions


class ValidationError(PaymentEngineError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class PaymentValidationError(ValidationError):
    """Payment or disbursement input failed a business rule."""

    code: str = "PAYMENT_VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidPaymentMethodError(ValidationError):
    """Payment method cannot be used for the requested operation."""

    code: str = "INVALID_PAYMENT_METHOD"

    def __init__(self, method_type: Any, message: str | None = None):
        self.method_type = _status_value(method_type)
        super().__init__(message or f"Invalid payment method: {self.method_type}")


class InvalidRecipientInfoError(ValidationError):
    """Disbursement recipient details are incomplete or malformed."""

    code: str = "INVALID_RECIPIENT_INFO"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidScheduleError(ValidationError):
    """Disbursement schedule is malformed, in the past or exhausted."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Status (state machine) exceptions


class StatusError(PaymentEngineError):
    """Base exception for illegal lifecycle transitions."""

    code: str = "STATUS_ERROR"


class InvalidPaymentStatusError(StatusError):
    """Payment is not in a status that permits the requested operation."""

    code: str = "INVALID_PAYMENT_STATUS"

    def __init__(
        self,
        current_status: Any,
        required_status: Any,
        message: str | None = None,
        payment_id: str | None = None,
    ):
        self.payment_id = payment_id
        self.current_status = _status_value(current_status)
        self.required_status = _status_value(required_status)
        super().__init__(
            message
            or f"Payment status is {self.current_status}, "
            f"operation requires {self.required_status}"
        )


class InvalidDisbursementStatusError(StatusError):
    """Disbursement is not in a status that permits the requested operation."""

    code: str = "INVALID_DISBURSEMENT_STATUS"

    def __init__(
        self,
        current_status: Any,
        required_status: Any,
        message: str | None = None,
        disbursement_id: str | None = None,
    ):
        self.disbursement_id = disbursement_id
        self.current_status = _status_value(current_status)
        self.required_status = _status_value(required_status)
        super().__init__(
            message
            or f"Disbursement status is {self.current_status}, "
            f"operation requires {self.required_status}"
        )


class InvalidSettlementBatchStatusError(StatusError):
    """Settlement batch is not in a status that permits the operation."""

    code: str = "INVALID_SETTLEMENT_BATCH_STATUS"

    def __init__(
        self,
        current_status: Any,
        required_status: Any,
        message: str | None = None,
    ):
        self.current_status = _status_value(current_status)
        self.required_status = _status_value(required_status)
        super().__init__(
            message
            or f"Settlement batch status is {self.current_status}, "
            f"operation requires {self.required_status}"
        )


# Duplicate exceptions


class DuplicateError(PaymentEngineError):
    """Base exception for idempotency and uniqueness conflicts."""

    code: str = "DUPLICATE"


class DuplicatePaymentError(DuplicateError):
    """An unexpired idempotency key already maps to a payment for this tenant."""

    code: str = "DUPLICATE_PAYMENT"

    def __init__(self, idempotency_key: str, existing_payment_id: str, tenant_id: str | None = None):
        self.idempotency_key = idempotency_key
        self.existing_payment_id = existing_payment_id
        self.tenant_id = tenant_id
        super().__init__(
            f"Duplicate payment for idempotency key {idempotency_key}: "
            f"existing payment {existing_payment_id}"
        )


class PaymentAlreadyBatchedError(DuplicateError):
    """Payment already belongs to an open settlement batch."""

    code: str = "PAYMENT_ALREADY_BATCHED"

    def __init__(self, payment_id: str, batch_id: str):
        self.payment_id = payment_id
        self.batch_id = batch_id
        super().__init__(
            f"Payment {payment_id} already belongs to open settlement batch {batch_id}"
        )


# Allocation exceptions


class AllocationError(PaymentEngineError):
    """Allocation request is invalid or a strategy broke conservation."""

    code: str = "ALLOCATION_FAILED"

    def __init__(self, message: str, errors: list[str] | tuple[str, ...] = ()):
        self.errors = tuple(errors) or (message,)
        super().__init__(message)


# Currency exceptions


class CurrencyError(PaymentEngineError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Currency code is not a three-letter upper-case code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency!r}")


class CurrencyMismatchError(CurrencyError):
    """Operation combined amounts in different currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, actual: str):
        self.expected = str(expected)
        self.actual = str(actual)
        super().__init__(f"Currency mismatch: expected {self.expected}, got {self.actual}")


class CurrencyConversionError(CurrencyError):
    """Exchange-rate capture or conversion failed."""

    code: str = "CURRENCY_CONVERSION_FAILED"

    def __init__(
        self,
        message: str,
        source_currency: str | None = None,
        target_currency: str | None = None,
    ):
        self.source_currency = source_currency
        self.target_currency = target_currency
        super().__init__(message)


# Limit exceptions


class LimitError(PaymentEngineError):
    """Base exception for configured limit breaches."""

    code: str = "LIMIT_ERROR"


class DisbursementLimitExceededError(LimitError):
    """Disbursement would exceed a configured amount or count limit."""

    code: str = "DISBURSEMENT_LIMIT_EXCEEDED"

    def __init__(self, limit_type: str, limit: Any, attempted: Any):
        self.limit_type = limit_type
        self.limit = str(limit)
        self.attempted = str(attempted)
        super().__init__(
            f"Disbursement {limit_type} limit of {self.limit} exceeded: {self.attempted}"
        )


# Concurrency exceptions


class ConcurrencyError(PaymentEngineError):
    """Base exception for concurrent modification conflicts."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Entity was saved by another writer since it was loaded."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )
