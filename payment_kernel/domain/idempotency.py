"""Idempotency keys for payment creation, scoped per tenant."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from payment_kernel.domain.clock import Clock
from payment_kernel.exceptions import PaymentValidationError

MAX_KEY_LENGTH = 255


@dataclass(frozen=True)
class IdempotencyKey:
    """
    Caller-supplied token that makes payment creation safe to retry.

    Contract:
        Two creations with the same ``value`` for the same ``tenant_id``
        while the key is unexpired refer to the same payment.  Keys never
        collide across tenants.

    Guarantees:
        - ``value`` is non-empty and at most 255 characters.
        - ``expires_at`` is None (never expires) or timezone-aware.
    """

    value: str
    tenant_id: str
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise PaymentValidationError("Idempotency key cannot be empty", field="idempotency_key")
        if len(self.value) > MAX_KEY_LENGTH:
            raise PaymentValidationError(
                f"Idempotency key cannot exceed {MAX_KEY_LENGTH} characters",
                field="idempotency_key",
            )
        if not self.tenant_id:
            raise PaymentValidationError("Idempotency key requires a tenant", field="tenant_id")

    @classmethod
    def for_request(
        cls,
        value: str,
        tenant_id: str,
        clock: Clock,
        ttl_hours: int = 24,
    ) -> IdempotencyKey:
        """Wrap a caller token with an expiry ``ttl_hours`` from now."""
        return cls(value=value, tenant_id=tenant_id, expires_at=clock.now() + timedelta(hours=ttl_hours))

    @classmethod
    def generate(cls, tenant_id: str, clock: Clock, ttl_hours: int = 24) -> IdempotencyKey:
        return cls.for_request(f"idem_{uuid4().hex}", tenant_id, clock, ttl_hours)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __str__(self) -> str:
        return self.value
