"""
SQLAlchemy implementations of the persistence Protocols in
``payment_kernel.domain.contracts``.

All repositories flush within the caller's transaction and never commit.
"""

from payment_kernel.repositories.base import BaseRepository
from payment_kernel.repositories.disbursement_repository import SqlDisbursementRepository
from payment_kernel.repositories.payment_repository import SqlPaymentRepository
from payment_kernel.repositories.schedule_repository import SqlDisbursementScheduleRepository
from payment_kernel.repositories.settlement_repository import SqlSettlementBatchRepository

__all__ = [
    "BaseRepository",
    "SqlDisbursementRepository",
    "SqlDisbursementScheduleRepository",
    "SqlPaymentRepository",
    "SqlSettlementBatchRepository",
]
