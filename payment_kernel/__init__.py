"""
Payment Kernel

Payment transaction lifecycle and disbursement orchestration with:
- Guarded status transitions
- Tenant-scoped idempotent creation
- Multi-step disbursement approval
- Settlement batch reconciliation
- Exact, minor-unit money arithmetic
"""

__version__ = "0.1.0"
