"""
Payment kernel services -- orchestration over the domain and repositories.

The ``build_*`` factories wire the SQLAlchemy repositories for a session:

    with session_scope() as session:
        manager = build_payment_manager(session, executor)
        payment = manager.create(...)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from payment_kernel.config import PaymentConfig
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.contracts import EventDispatcher, PaymentExecutor
from payment_kernel.repositories import (
    SqlDisbursementRepository,
    SqlDisbursementScheduleRepository,
    SqlPaymentRepository,
    SqlSettlementBatchRepository,
)
from payment_kernel.services.disbursement_manager import DisbursementManager
from payment_kernel.services.disbursement_scheduler import DisbursementScheduler
from payment_kernel.services.event_dispatcher import InMemoryEventDispatcher
from payment_kernel.services.payment_manager import PaymentManager
from payment_kernel.services.payment_validator import PaymentValidator
from payment_kernel.services.settlement_manager import SettlementManager

__all__ = [
    "DisbursementManager",
    "DisbursementScheduler",
    "InMemoryEventDispatcher",
    "PaymentManager",
    "PaymentValidator",
    "SettlementManager",
    "build_disbursement_manager",
    "build_disbursement_scheduler",
    "build_payment_manager",
    "build_settlement_manager",
]


def build_payment_manager(
    session: Session,
    executor: PaymentExecutor,
    dispatcher: EventDispatcher | None = None,
    clock: Clock | None = None,
    config: PaymentConfig | None = None,
) -> PaymentManager:
    clock = clock or SystemClock()
    return PaymentManager(
        repository=SqlPaymentRepository(session, clock),
        executor=executor,
        dispatcher=dispatcher or InMemoryEventDispatcher(),
        clock=clock,
        config=config,
    )


def build_disbursement_manager(
    session: Session,
    executor: PaymentExecutor,
    dispatcher: EventDispatcher | None = None,
    clock: Clock | None = None,
    config: PaymentConfig | None = None,
) -> DisbursementManager:
    clock = clock or SystemClock()
    return DisbursementManager(
        repository=SqlDisbursementRepository(session),
        executor=executor,
        dispatcher=dispatcher or InMemoryEventDispatcher(),
        clock=clock,
        config=config,
        payment_repository=SqlPaymentRepository(session, clock),
    )


def build_settlement_manager(
    session: Session,
    dispatcher: EventDispatcher | None = None,
    clock: Clock | None = None,
) -> SettlementManager:
    clock = clock or SystemClock()
    return SettlementManager(
        repository=SqlSettlementBatchRepository(session),
        payment_repository=SqlPaymentRepository(session, clock),
        dispatcher=dispatcher or InMemoryEventDispatcher(),
        clock=clock,
    )


def build_disbursement_scheduler(
    session: Session,
    clock: Clock | None = None,
) -> DisbursementScheduler:
    return DisbursementScheduler(
        repository=SqlDisbursementRepository(session),
        schedule_repository=SqlDisbursementScheduleRepository(session),
        clock=clock or SystemClock(),
    )
