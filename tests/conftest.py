"""
Pytest fixtures for the payment kernel test suite.

Provides:
- Structured log configuration and a JSON log capture fixture
- In-memory SQLite sessions (one fresh database per test)
- Deterministic clock, recording event dispatcher and a scriptable executor
- Manager fixtures wired to the SQLAlchemy repositories

Environment Variables:
- DATABASE_URL: optional SQLAlchemy URL.  Defaults to in-memory SQLite;
  point it at PostgreSQL to run the repository tests against a server.
"""

import json
import logging
import os
from collections.abc import Generator
from io import StringIO

import pytest
from sqlalchemy.orm import Session

from payment_kernel.config import PaymentConfig
from payment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from payment_kernel.domain.clock import DeterministicClock
from payment_kernel.domain.contracts import ExecutionResult
from payment_kernel.domain.payment import PaymentTransaction
from payment_kernel.domain.values import Money
from payment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payment_kernel.services import (
    InMemoryEventDispatcher,
    build_disbursement_manager,
    build_payment_manager,
    build_settlement_manager,
)

TEST_TENANT_ID = "tenant-001"
OTHER_TENANT_ID = "tenant-002"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture payment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, payment_manager):
            payment_manager.create(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payment_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", "sqlite://")


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """Fresh schema per test; the session is rolled back and closed afterwards."""
    init_engine_from_url(get_database_url())
    create_tables()
    db_session = get_session()
    try:
        yield db_session
    finally:
        db_session.rollback()
        db_session.close()
        drop_tables()
        reset_engine()


# =============================================================================
# Collaborators
# =============================================================================


class FakeExecutor:
    """
    Scriptable PaymentExecutor.

    ``results`` is consumed in order by ``execute``; once empty every
    execution succeeds with a generated external reference.  Setting
    ``execute_error`` / ``refund_error`` makes the call raise instead.
    """

    def __init__(self):
        self.results: list[ExecutionResult] = []
        self.refund_results: list[ExecutionResult] = []
        self.execute_error: Exception | None = None
        self.refund_error: Exception | None = None
        self.executed: list[PaymentTransaction] = []
        self.refunds: list[tuple[str, Money, str | None]] = []

    def execute(self, transaction: PaymentTransaction) -> ExecutionResult:
        self.executed.append(transaction)
        if self.execute_error is not None:
            raise self.execute_error
        if self.results:
            return self.results.pop(0)
        return ExecutionResult.succeeded(f"ext-{len(self.executed):04d}")

    def refund(self, transaction_id: str, amount: Money, reason: str | None = None) -> ExecutionResult:
        self.refunds.append((transaction_id, amount, reason))
        if self.refund_error is not None:
            raise self.refund_error
        if self.refund_results:
            return self.refund_results.pop(0)
        return ExecutionResult.succeeded(f"rfd-{len(self.refunds):04d}")


@pytest.fixture
def clock() -> DeterministicClock:
    """Starts at 2024-01-15 12:00 UTC (a Monday)."""
    return DeterministicClock()


@pytest.fixture
def dispatcher() -> InMemoryEventDispatcher:
    return InMemoryEventDispatcher()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def config() -> PaymentConfig:
    return PaymentConfig()


@pytest.fixture
def payment_manager(session, executor, dispatcher, clock, config):
    return build_payment_manager(session, executor, dispatcher, clock, config)


@pytest.fixture
def disbursement_manager(session, executor, dispatcher, clock, config):
    return build_disbursement_manager(session, executor, dispatcher, clock, config)


@pytest.fixture
def settlement_manager(session, dispatcher, clock):
    return build_settlement_manager(session, dispatcher, clock)


@pytest.fixture
def usd():
    """Shorthand for building USD amounts: ``usd("100.00")``."""
    def _usd(amount: str) -> Money:
        return Money.of(amount, "USD")
    return _usd
