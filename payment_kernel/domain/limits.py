"""Disbursement amount and count limits per transaction and per period."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from payment_kernel.domain.values import Money
from payment_kernel.exceptions import DisbursementLimitExceededError


class LimitPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    def window_start(self, now: datetime) -> datetime:
        """Start of the period containing ``now`` (weeks start on Monday)."""
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if self is LimitPeriod.DAILY:
            return midnight
        if self is LimitPeriod.WEEKLY:
            return midnight - timedelta(days=midnight.weekday())
        return midnight.replace(day=1)


@dataclass(frozen=True)
class DisbursementLimits:
    """
    Caps on disbursed value and volume for one tenant.

    Contract:
        Every limit is optional; None means unlimited.  Amount limits share
        one currency, and comparing a disbursement in another currency
        raises CurrencyMismatchError.

    Guarantees:
        - Validation methods raise DisbursementLimitExceededError and never
          return a flag.
    """

    per_transaction: Money | None = None
    daily: Money | None = None
    weekly: Money | None = None
    monthly: Money | None = None
    daily_count: int | None = None
    weekly_count: int | None = None
    monthly_count: int | None = None

    def __post_init__(self) -> None:
        for name in ("per_transaction", "daily", "weekly", "monthly"):
            limit = getattr(self, name)
            if limit is not None and limit.is_negative:
                raise ValueError(f"{name} limit cannot be negative")
        for name in ("daily_count", "weekly_count", "monthly_count"):
            limit = getattr(self, name)
            if limit is not None and limit < 0:
                raise ValueError(f"{name} limit cannot be negative")

    @classmethod
    def unlimited(cls) -> DisbursementLimits:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DisbursementLimits:
        """Build limits from ``{"currency": "USD", "daily": "50000", "daily_count": 20, ...}``."""
        if not data:
            return cls()
        currency = data.get("currency")
        amounts: dict[str, Money] = {}
        for name in ("per_transaction", "daily", "weekly", "monthly"):
            if data.get(name) is not None:
                if currency is None:
                    raise ValueError("Disbursement amount limits require a currency")
                amounts[name] = Money.of(str(data[name]), currency)
        counts = {
            name: int(data[name])
            for name in ("daily_count", "weekly_count", "monthly_count")
            if data.get(name) is not None
        }
        return cls(**amounts, **counts)

    def amount_limit(self, period: LimitPeriod) -> Money | None:
        return getattr(self, period.value)

    def count_limit(self, period: LimitPeriod) -> int | None:
        return getattr(self, f"{period.value}_count")

    def has_period_limits(self) -> bool:
        return any(
            self.amount_limit(p) is not None or self.count_limit(p) is not None
            for p in LimitPeriod
        )

    def validate_amount(self, amount: Money) -> None:
        if self.per_transaction is not None and amount > self.per_transaction:
            raise DisbursementLimitExceededError("per_transaction", self.per_transaction, amount)

    def validate_period_amount(self, amount: Money, current_usage: Money, period: LimitPeriod) -> None:
        limit = self.amount_limit(period)
        if limit is not None and current_usage + amount > limit:
            raise DisbursementLimitExceededError(period.value, limit, current_usage + amount)

    def validate_period_count(self, current_count: int, period: LimitPeriod) -> None:
        limit = self.count_limit(period)
        if limit is not None and current_count + 1 > limit:
            raise DisbursementLimitExceededError(f"{period.value}_count", limit, current_count + 1)
