"""
PaymentValidator -- business-rule checks run before any side effect.

Responsibility:
    Validates payment creation input, idempotency keys and execution
    preconditions against PaymentConfig.  Raises on the first violation;
    never mutates anything.

Architecture position:
    Kernel > Services.  Pure with respect to persistence: takes values,
    returns nothing, raises typed errors.

Failure modes:
    - PaymentValidationError (with ``field``) for rejected input.
    - InvalidPaymentMethodError for an unknown method type.
    - InvalidPaymentStatusError when a payment is not executable.
"""

from __future__ import annotations

from datetime import datetime

from payment_kernel.config import PaymentConfig
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.payment import (
    PaymentDirection,
    PaymentMethodType,
    PaymentStatus,
    PaymentTransaction,
)
from payment_kernel.domain.values import Money
from payment_kernel.exceptions import (
    InvalidPaymentMethodError,
    InvalidPaymentStatusError,
    PaymentValidationError,
)


class PaymentValidator:
    """
    Validation rules for payment creation and execution.

    Contract:
        Every ``validate_*`` method returns None on success and raises on
        the first failed rule.  Rules are checked in a fixed order so the
        same input always produces the same error.
    """

    def __init__(self, config: PaymentConfig | None = None):
        self.config = config or PaymentConfig()

    @staticmethod
    def require(value: object, field: str) -> None:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise PaymentValidationError(f"Field '{field}' is required", field=field)

    @staticmethod
    def parse_direction(direction: PaymentDirection | str) -> PaymentDirection:
        try:
            return PaymentDirection(direction)
        except ValueError as exc:
            raise PaymentValidationError(
                f"Invalid payment direction: {direction}", field="direction"
            ) from exc

    @staticmethod
    def parse_method_type(method_type: PaymentMethodType | str) -> PaymentMethodType:
        try:
            return PaymentMethodType(method_type)
        except ValueError as exc:
            raise InvalidPaymentMethodError(method_type) from exc

    def validate_amount(self, amount: Money) -> None:
        """
        Positive and within the configured bounds.

        The bounds are plain major-unit numbers applied to every currency.
        """
        if not isinstance(amount, Money):
            raise PaymentValidationError("Payment amount must be a Money value", field="amount")
        if not amount.is_positive:
            raise PaymentValidationError("Payment amount must be positive", field="amount")
        minimum = self.config.min_payment_amount
        if minimum is not None and amount.amount < minimum:
            raise PaymentValidationError(
                f"Payment amount must be at least {minimum} {amount.currency.code}",
                field="amount",
            )
        if amount.amount > self.config.max_payment_amount:
            raise PaymentValidationError(
                f"Payment amount cannot exceed {self.config.max_payment_amount} "
                f"{amount.currency.code}",
                field="amount",
            )

    def validate_reference(self, reference: str) -> None:
        length = len(reference.strip())
        if length < self.config.min_reference_length:
            raise PaymentValidationError(
                f"Payment reference must be at least {self.config.min_reference_length} characters",
                field="reference",
            )
        if length > self.config.max_reference_length:
            raise PaymentValidationError(
                f"Payment reference cannot exceed {self.config.max_reference_length} characters",
                field="reference",
            )

    def validate_parties(
        self,
        direction: PaymentDirection,
        payer_id: str | None,
        payee_id: str | None,
    ) -> None:
        if direction == PaymentDirection.INBOUND and not payer_id:
            raise PaymentValidationError(
                "Payer ID is required for inbound payments", field="payer_id"
            )
        if direction == PaymentDirection.OUTBOUND and not payee_id:
            raise PaymentValidationError(
                "Payee ID is required for outbound payments", field="payee_id"
            )

    def validate_create(
        self,
        *,
        tenant_id: str,
        reference: str,
        direction: PaymentDirection | str,
        amount: Money,
        method_type: PaymentMethodType | str,
        payer_id: str | None = None,
        payee_id: str | None = None,
    ) -> tuple[PaymentDirection, PaymentMethodType]:
        """Run every creation rule; returns the parsed direction and method type."""
        self.require(tenant_id, "tenant_id")
        self.require(reference, "reference")
        self.require(direction, "direction")
        self.require(amount, "amount")
        self.require(method_type, "method_type")

        parsed_direction = self.parse_direction(direction)
        parsed_method = self.parse_method_type(method_type)
        self.validate_amount(amount)
        self.validate_reference(reference)
        self.validate_parties(parsed_direction, payer_id, payee_id)
        return parsed_direction, parsed_method

    def validate_idempotency_key(self, key: IdempotencyKey, tenant_id: str, now: datetime) -> None:
        if key.tenant_id != tenant_id:
            raise PaymentValidationError(
                "Idempotency key belongs to a different tenant", field="idempotency_key"
            )
        if key.is_expired(now):
            raise PaymentValidationError("Idempotency key has expired", field="idempotency_key")

    def validate_for_execution(self, payment: PaymentTransaction) -> None:
        if payment.status != PaymentStatus.PENDING:
            raise InvalidPaymentStatusError(
                current_status=payment.status,
                required_status=PaymentStatus.PENDING,
                message="Only pending payments can be executed",
                payment_id=payment.id,
            )
