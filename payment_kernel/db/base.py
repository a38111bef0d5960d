"""
Module: payment_kernel.db.base
Responsibility: Declarative base and shared column types for all ORM models.
Architecture position: Kernel > DB.  Lowest-level import target in the
    kernel; MUST NOT import from models/, repositories/, services/ or domain/.

Invariants enforced:
    - Money never touches a floating point column: amounts are stored as
      integer minor units (BigInteger) next to a three-letter currency.
    - Timestamps are always timezone-aware UTC, on every backend (the
      UTCDateTime decorator restores tzinfo on SQLite, which drops it).
    - Entity ids are prefixed strings (``pay_…``, ``disb_…``, ``stl_…``)
      generated by the domain, not by the database.
"""

from datetime import UTC, datetime
from typing import Any, ClassVar

from sqlalchemy import JSON, BigInteger, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column normalised to UTC.

    Guarantees:
        - process_bind_param rejects naive datetimes and stores UTC.
        - process_result_value always returns an aware UTC datetime.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime cannot be stored: {value!r}")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """
    Declarative base for all payment kernel models.

    Guarantees:
        - datetime maps to UTCDateTime.
        - int maps to BigInteger (minor-unit amounts overflow 32 bits).
        - dict maps to JSON (metadata columns).
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        int: BigInteger,
        dict[str, Any]: JSON,
    }

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
