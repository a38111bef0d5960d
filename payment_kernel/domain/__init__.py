"""
Pure domain layer.

Entities, value objects, lifecycle tables and collaborator contracts with
NO dependencies on the ORM, the database or the system clock.  Current
time is always passed in by the caller.
"""

from payment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payment_kernel.domain.contracts import (
    AllocatableDocument,
    DisbursementRepository,
    EventDispatcher,
    ExecutionResult,
    PaymentExecutor,
    PaymentRepository,
    SettlementBatchRepository,
)
from payment_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from payment_kernel.domain.disbursement import (
    DISBURSEMENT_WORKFLOW,
    Disbursement,
    DisbursementStatus,
    RecipientInfo,
)
from payment_kernel.domain.idempotency import IdempotencyKey
from payment_kernel.domain.limits import DisbursementLimits, LimitPeriod
from payment_kernel.domain.payment import (
    PAYMENT_WORKFLOW,
    PaymentDirection,
    PaymentMethodType,
    PaymentStatus,
    PaymentTransaction,
)
from payment_kernel.domain.settlement import (
    SETTLEMENT_BATCH_WORKFLOW,
    SettlementBatch,
    SettlementBatchStatus,
    SettlementEntry,
)
from payment_kernel.domain.values import Currency, ExchangeRateSnapshot, Money
from payment_kernel.domain.workflow import Transition, Workflow

__all__ = [
    "AllocatableDocument",
    "Clock",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DISBURSEMENT_WORKFLOW",
    "DeterministicClock",
    "Disbursement",
    "DisbursementLimits",
    "DisbursementRepository",
    "DisbursementStatus",
    "EventDispatcher",
    "ExchangeRateSnapshot",
    "ExecutionResult",
    "IdempotencyKey",
    "LimitPeriod",
    "Money",
    "PAYMENT_WORKFLOW",
    "PaymentDirection",
    "PaymentExecutor",
    "PaymentMethodType",
    "PaymentRepository",
    "PaymentStatus",
    "PaymentTransaction",
    "RecipientInfo",
    "SETTLEMENT_BATCH_WORKFLOW",
    "SettlementBatch",
    "SettlementBatchRepository",
    "SettlementBatchStatus",
    "SettlementEntry",
    "SystemClock",
    "Transition",
    "Workflow",
]
