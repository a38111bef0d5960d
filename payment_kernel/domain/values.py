"""
Values -- Immutable, self-validating monetary value objects.

Responsibility:
    Provides Currency, Money and ExchangeRateSnapshot.  Every amount the
    kernel and the allocation engine handle is a Money, never a raw
    Decimal or float.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module and by payment_engines.

Invariants enforced:
    - Money is held at the fixed minor-unit scale of its currency; the
      amount is rounded half-up once, at construction.
    - Arithmetic and comparison never mix currencies (CurrencyMismatchError).
    - Multiplication by a rational factor is computed exactly and rounded
      half-up to the nearest minor unit.
    - Floats are rejected everywhere.

Failure modes:
    - TypeError when an amount or factor is a float or an unsupported type.
    - ValueError on an unparseable amount string.
    - InvalidCurrencyError on a malformed currency code.
    - CurrencyMismatchError when two operands carry different currencies.
    - CurrencyConversionError on a non-positive rate or a wrong-currency
      conversion input.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from fractions import Fraction
from typing import Any

from payment_kernel.domain.clock import Clock
from payment_kernel.domain.currency import CurrencyRegistry
from payment_kernel.exceptions import CurrencyConversionError, CurrencyMismatchError


def _to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary values must not be {type(value).__name__}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, str)):
        try:
            return Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
    raise TypeError(f"Unsupported amount type: {type(value).__name__}")


def _to_fraction(factor: Decimal | int | str | Fraction) -> Fraction:
    if isinstance(factor, Fraction):
        return factor
    return Fraction(_to_decimal(factor))


def round_half_up(value: Fraction) -> int:
    """Round an exact rational to the nearest integer, ties away from zero."""
    magnitude = math.floor(abs(value) + Fraction(1, 2))
    return -magnitude if value < 0 else magnitude


@dataclass(frozen=True, slots=True)
class Currency:
    """
    Currency code value object.

    Guarantees:
        - ``code`` is three upper-case letters.
        - ``decimal_places`` comes from CurrencyRegistry.
    """

    code: str

    def __post_init__(self) -> None:
        CurrencyRegistry.validate(self.code)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def minor_unit(self) -> Decimal:
        return Decimal(1).scaleb(-self.decimal_places)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency.  The amount is quantized
        to the currency's minor unit (half-up) when the value is built, so
        every later addition and subtraction is exact.

    Guarantees:
        - Immutable and hashable.
        - ``minor_units`` is an exact integer view of the amount.
        - Operations between two Money values require the same currency.

    Non-goals:
        - Does NOT convert currencies (see ExchangeRateSnapshot.convert).
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

        amount = _to_decimal(self.amount)
        if not amount.is_finite():
            raise ValueError(f"Invalid amount: {self.amount!r}")
        object.__setattr__(
            self,
            "amount",
            amount.quantize(self.currency.minor_unit, rounding=ROUND_HALF_UP),
        )

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """Build Money from a Decimal, integer or numeric string."""
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        return cls(amount=Decimal(0), currency=currency)

    @classmethod
    def from_minor_units(cls, minor_units: int, currency: str | Currency) -> Money:
        """Build Money from an integer count of minor units (cents, yen, fils)."""
        if isinstance(minor_units, bool) or not isinstance(minor_units, int):
            raise TypeError("minor_units must be an int")
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(
            amount=Decimal(minor_units).scaleb(-currency.decimal_places),
            currency=currency,
        )

    @classmethod
    def sum(cls, values: Iterable[Money], currency: str | Currency) -> Money:
        """Sum Money values; an empty iterable gives zero in ``currency``."""
        total = cls.zero(currency)
        for value in values:
            total = total + value
        return total

    @property
    def minor_units(self) -> int:
        return int(self.amount.scaleb(self.currency.decimal_places))

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def _require_same_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency.code, other.currency.code)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount), currency=self.currency)

    def __mul__(self, factor: Decimal | int | str | Fraction) -> Money:
        """Multiply by a rational factor, rounding half-up to the minor unit."""
        if isinstance(factor, Money):
            return NotImplemented
        exact = Fraction(self.minor_units) * _to_fraction(factor)
        return Money.from_minor_units(round_half_up(exact), self.currency)

    def __rmul__(self, factor: Decimal | int | str | Fraction) -> Money:
        return self.__mul__(factor)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({str(self.amount)!r}, {self.currency.code!r})"


@dataclass(frozen=True, slots=True)
class ExchangeRateSnapshot:
    """
    Exchange rate captured at the moment a payment settles cross-currency.

    Contract:
        ``1 source_currency = rate * target_currency``.  The snapshot is a
        record of what was applied; the kernel never looks rates up.

    Guarantees:
        - ``rate`` is a positive Decimal.
        - ``convert`` rounds half-up to the target currency's minor unit.
    """

    source_currency: str
    target_currency: str
    rate: Decimal
    captured_at: datetime
    provider: str | None = None
    rate_type: str | None = None

    def __post_init__(self) -> None:
        CurrencyRegistry.validate(self.source_currency)
        CurrencyRegistry.validate(self.target_currency)
        try:
            rate = _to_decimal(self.rate)
        except (TypeError, ValueError) as e:
            raise CurrencyConversionError(
                f"Invalid exchange rate: {self.rate!r}",
                self.source_currency,
                self.target_currency,
            ) from e
        if not rate.is_finite() or rate <= 0:
            raise CurrencyConversionError(
                "Exchange rate must be a positive number",
                self.source_currency,
                self.target_currency,
            )
        object.__setattr__(self, "rate", rate)

    @classmethod
    def capture(
        cls,
        source_currency: str,
        target_currency: str,
        rate: Decimal | str | int,
        clock: Clock,
        provider: str | None = None,
        rate_type: str | None = None,
    ) -> ExchangeRateSnapshot:
        """Record ``rate`` as of the clock's current time."""
        return cls(
            source_currency=source_currency,
            target_currency=target_currency,
            rate=rate,
            captured_at=clock.now(),
            provider=provider,
            rate_type=rate_type,
        )

    @classmethod
    def same_currency(cls, currency: str, clock: Clock) -> ExchangeRateSnapshot:
        """Identity snapshot for payments settled in their own currency."""
        return cls(
            source_currency=currency,
            target_currency=currency,
            rate=Decimal(1),
            captured_at=clock.now(),
            provider="system",
            rate_type="identity",
        )

    @property
    def is_identity(self) -> bool:
        return self.source_currency == self.target_currency and self.rate == 1

    def convert(self, money: Money) -> Money:
        """Convert a source-currency amount into the target currency."""
        if money.currency.code != self.source_currency:
            raise CurrencyConversionError(
                f"Cannot convert {money.currency.code} with a "
                f"{self.source_currency}/{self.target_currency} rate",
                self.source_currency,
                self.target_currency,
            )
        return Money(amount=money.amount * self.rate, currency=self.target_currency)

    def convert_back(self, money: Money) -> Money:
        """Convert a target-currency amount back into the source currency."""
        if money.currency.code != self.target_currency:
            raise CurrencyConversionError(
                f"Cannot convert {money.currency.code} back with a "
                f"{self.source_currency}/{self.target_currency} rate",
                self.source_currency,
                self.target_currency,
            )
        with localcontext() as ctx:
            ctx.prec = 40
            amount = money.amount / self.rate
        return Money(amount=amount, currency=self.source_currency)

    def inverse(self) -> ExchangeRateSnapshot:
        with localcontext() as ctx:
            ctx.prec = 28
            inverted = Decimal(1) / self.rate
        return ExchangeRateSnapshot(
            source_currency=self.target_currency,
            target_currency=self.source_currency,
            rate=inverted,
            captured_at=self.captured_at,
            provider=self.provider,
            rate_type=self.rate_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_currency": self.source_currency,
            "target_currency": self.target_currency,
            "rate": str(self.rate),
            "captured_at": self.captured_at.isoformat(),
            "provider": self.provider,
            "rate_type": self.rate_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExchangeRateSnapshot:
        captured_at = data["captured_at"]
        if isinstance(captured_at, str):
            captured_at = datetime.fromisoformat(captured_at)
        return cls(
            source_currency=data["source_currency"],
            target_currency=data["target_currency"],
            rate=Decimal(str(data["rate"])),
            captured_at=captured_at,
            provider=data.get("provider"),
            rate_type=data.get("rate_type"),
        )

    def __str__(self) -> str:
        return f"1 {self.source_currency} = {self.rate} {self.target_currency}"
