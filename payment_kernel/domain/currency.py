"""Currency -- code validation and minor-unit scale lookup."""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar

from payment_kernel.exceptions import InvalidCurrencyError

_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


@dataclass(frozen=True)
class CurrencyInfo:
    """Scale information for one currency code."""

    code: str
    decimal_places: int

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount, e.g. Decimal('0.01') for USD."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """
    Minor-unit scale per currency code.

    Any three-letter upper-case code is accepted; codes without an explicit
    entry use two decimal places.  ``register`` lets a deployment declare
    additional non-default scales.
    """

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    _SCALES: ClassVar[dict[str, int]] = {
        # Zero-decimal currencies
        "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0,
        "KMF": 0, "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "UYI": 0,
        "VND": 0, "VUV": 0, "XAF": 0, "XOF": 0, "XPF": 0,
        # Three-decimal currencies
        "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3,
        "TND": 3,
        # Four-decimal accounting units
        "CLF": 4, "UYW": 4,
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return isinstance(code, str) and bool(_CODE_PATTERN.match(code))

    @classmethod
    def validate(cls, code: str) -> str:
        """Return ``code`` unchanged or raise InvalidCurrencyError."""
        if not cls.is_valid(code):
            raise InvalidCurrencyError(code)
        return code

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        cls.validate(code)
        return cls._SCALES.get(code, cls.DEFAULT_DECIMAL_PLACES)

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo:
        return CurrencyInfo(code, cls.get_decimal_places(code))

    @classmethod
    def register(cls, code: str, decimal_places: int) -> None:
        """Declare the scale of a currency that does not use two decimals."""
        cls.validate(code)
        if decimal_places < 0:
            raise ValueError("decimal_places cannot be negative")
        cls._SCALES[code] = decimal_places
