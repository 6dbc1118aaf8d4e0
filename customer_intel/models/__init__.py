"""Customer Intelligence - Database Models"""

from .commerce import CustomerRecord, OrderRecord, TrackedEventRecord

__all__ = [
    "CustomerRecord",
    "OrderRecord",
    "TrackedEventRecord",
]
