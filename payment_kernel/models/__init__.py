"""
ORM models for the payment kernel.

Importing this package registers every table on ``Base.metadata``.
"""

from payment_kernel.models.disbursement import DisbursementModel
from payment_kernel.models.payment import IdempotencyKeyModel, PaymentTransactionModel
from payment_kernel.models.schedule import DisbursementScheduleModel
from payment_kernel.models.settlement import SettlementBatchEntryModel, SettlementBatchModel

__all__ = [
    "DisbursementModel",
    "DisbursementScheduleModel",
    "IdempotencyKeyModel",
    "PaymentTransactionModel",
    "SettlementBatchEntryModel",
    "SettlementBatchModel",
]
