"""
payment_kernel.config
=====================

Responsibility:
    Configuration schema for the payment kernel: creation bounds,
    idempotency-key lifetime, disbursement reference format and
    disbursement limits.  Values come from defaults, a dict, or a YAML
    file.

Invariants enforced:
    - ``max_payment_amount`` is positive.
    - ``min_payment_amount``, when set, is positive and not above the maximum.
    - ``1 <= min_reference_length <= max_reference_length``.
    - ``idempotency_ttl_hours`` is positive.
    - Monetary thresholds are ``Decimal`` -- never ``float``.

Failure modes:
    - Invalid values -> ``ValueError`` from ``__post_init__``.
    - Unknown keys in ``from_dict`` -> ``TypeError`` from the constructor.
    - Missing YAML file -> ``FileNotFoundError``; malformed YAML ->
      ``yaml.YAMLError``.

Example YAML::

    max_payment_amount: "10000000"
    min_payment_amount: "1.00"
    min_reference_length: 3
    max_reference_length: 50
    idempotency_ttl_hours: 24
    disbursement_reference_prefix: DISB
    disbursement_limits:
      currency: USD
      per_transaction: "250000"
      daily: "1000000"
      daily_count: 50
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from payment_kernel.domain.limits import DisbursementLimits
from payment_kernel.logging_config import get_logger

logger = get_logger("config")


@dataclass
class PaymentConfig:
    """
    Configuration schema for the payment kernel.

    Contract:
        All fields have defaults.  ``__post_init__`` validates constraints
        and raises ``ValueError`` on violation.

    Guarantees:
        - ``max_payment_amount`` and ``min_payment_amount`` are compared with
          the amount in major units whatever its currency: 10,000,000 JPY
          and 10,000,000 USD hit the same cap.
        - ``disbursement_limits`` is always a DisbursementLimits instance.
    """

    max_payment_amount: Decimal = Decimal("10000000")
    min_payment_amount: Decimal | None = None
    min_reference_length: int = 3
    max_reference_length: int = 50
    idempotency_ttl_hours: int = 24
    disbursement_reference_prefix: str = "DISB"
    disbursement_limits: DisbursementLimits = field(default_factory=DisbursementLimits.unlimited)

    def __post_init__(self):
        if not isinstance(self.max_payment_amount, Decimal):
            if isinstance(self.max_payment_amount, float):
                raise ValueError("max_payment_amount must not be a float")
            self.max_payment_amount = Decimal(str(self.max_payment_amount))
        if self.max_payment_amount <= 0:
            raise ValueError("max_payment_amount must be positive")

        if self.min_payment_amount is not None:
            if isinstance(self.min_payment_amount, float):
                raise ValueError("min_payment_amount must not be a float")
            self.min_payment_amount = Decimal(str(self.min_payment_amount))
            if self.min_payment_amount <= 0:
                raise ValueError("min_payment_amount must be positive")
            if self.min_payment_amount > self.max_payment_amount:
                raise ValueError("min_payment_amount cannot exceed max_payment_amount")

        if self.min_reference_length < 1:
            raise ValueError("min_reference_length must be at least 1")
        if self.max_reference_length < self.min_reference_length:
            raise ValueError("max_reference_length cannot be less than min_reference_length")

        if self.idempotency_ttl_hours <= 0:
            raise ValueError("idempotency_ttl_hours must be positive")

        if not self.disbursement_reference_prefix or not self.disbursement_reference_prefix.isalnum():
            raise ValueError("disbursement_reference_prefix must be alphanumeric")

        if isinstance(self.disbursement_limits, dict):
            self.disbursement_limits = DisbursementLimits.from_dict(self.disbursement_limits)

        logger.info(
            "payment_config_initialized",
            extra={
                "max_payment_amount": str(self.max_payment_amount),
                "min_payment_amount": None if self.min_payment_amount is None else str(self.min_payment_amount),
                "reference_length": [self.min_reference_length, self.max_reference_length],
                "idempotency_ttl_hours": self.idempotency_ttl_hours,
                "has_disbursement_period_limits": self.disbursement_limits.has_period_limits(),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the standard defaults."""
        logger.info("payment_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g., loaded from a file)."""
        logger.info(
            "payment_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Load config from a YAML file; an empty file gives the defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Payment config in {path} must be a mapping")
        logger.info("payment_config_loading_from_yaml", extra={"path": str(path)})
        return cls.from_dict(data)
