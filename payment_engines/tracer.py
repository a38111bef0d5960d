"""
payment_engines.tracer -- invocation tracer emitting PAYMENT_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps a pure engine call and emits one structured
    log record with the engine name and version, a fingerprint of selected
    arguments, the outcome and the duration.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    and nothing else.  Uses the ``payment_kernel.engines.tracer`` logger
    directly so engines do not depend on kernel logging setup.

Invariants enforced:
    - Fingerprints are deterministic: values are canonicalised (sorted
      mapping keys, Money as "<amount> <currency>", enums by value) and
      hashed with SHA-256, truncated to 16 hex characters.
    - Arguments are bound against the wrapped signature, so positional
      and keyword calls produce the same fingerprint.
    - The wrapped function's exceptions propagate unchanged; a failed call
      is traced with ``outcome="error"`` first.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

_logger = logging.getLogger("payment_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, Mapping):
        items = sorted((str(k), v) for k, v in value.items())
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    doc_id = getattr(value, "id", None)
    outstanding = getattr(value, "outstanding_amount", None)
    if doc_id is not None and outstanding is not None:
        return f"doc({doc_id}:{outstanding})"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """SHA-256 prefix over ``field=value`` pairs; missing fields hash as "null"."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits PAYMENT_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "allocation").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Parameter names included in the input fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            outcome = "ok"
            t0 = time.monotonic()
            try:
                return func(*args, **kwargs)
            except Exception:
                outcome = "error"
                raise
            finally:
                _logger.info(
                    "PAYMENT_ENGINE_TRACE",
                    extra={
                        "trace_type": "PAYMENT_ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fp,
                        "outcome": outcome,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        "function": func.__qualname__,
                    },
                )

        return wrapper

    return decorator
