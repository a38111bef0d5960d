"""
Pure calculation engines for the payment kernel.

No I/O, no clock, no persistence.  Every public entry point is wrapped by
``@traced_engine`` and emits a PAYMENT_ENGINE_TRACE log record.
"""

from payment_engines.allocation import (
    AllocationEngine,
    AllocationMethod,
    AllocationResult,
    OutstandingDocument,
)
from payment_engines.allocation_strategies import (
    AllocationStrategy,
    FifoStrategy,
    LargestFirstStrategy,
    LifoStrategy,
    ManualStrategy,
    OldestFirstStrategy,
    ProportionalStrategy,
    SequentialStrategy,
    SmallestFirstStrategy,
)
from payment_engines.tracer import traced_engine

__all__ = [
    "AllocationEngine",
    "AllocationMethod",
    "AllocationResult",
    "AllocationStrategy",
    "FifoStrategy",
    "LargestFirstStrategy",
    "LifoStrategy",
    "ManualStrategy",
    "OldestFirstStrategy",
    "OutstandingDocument",
    "ProportionalStrategy",
    "SequentialStrategy",
    "SmallestFirstStrategy",
    "traced_engine",
]
