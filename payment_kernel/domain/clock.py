"""
Clock -- injectable time source.

Responsibility:
    Lets entities, managers and repositories read the current time through
    an injected object instead of calling ``datetime.now()`` directly.
    Idempotency-key expiry, scheduled disbursements and every lifecycle
    timestamp depend on it.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that touches the
    system time.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Managers receive a Clock via constructor injection and pass the
        current time into entity mutators.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...

    def today(self):
        """Get the current UTC calendar date."""
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning the real system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
    """

    DEFAULT_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = _ensure_utc(fixed_time or self.DEFAULT_TIME)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._current = _ensure_utc(time)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Advance the clock by ``delta`` or ``timedelta(**kwargs)``.

        With no arguments the clock moves forward one second.
        """
        step = delta if delta is not None else timedelta(**kwargs) if kwargs else timedelta(seconds=1)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current = self._current + step
        return self._current


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
