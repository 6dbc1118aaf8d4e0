"""
Collaborator repositories (orders, customers, events).

Each collaborator is a Protocol with a SQLAlchemy async implementation.
"""

from customer_intel.repositories.customers import CustomerDirectory, SqlCustomerDirectory
from customer_intel.repositories.events import EventHistory, SqlEventHistory
from customer_intel.repositories.orders import EXCLUDED_STATUSES, OrderHistory, SqlOrderHistory

__all__ = [
    "CustomerDirectory",
    "SqlCustomerDirectory",
    "EventHistory",
    "SqlEventHistory",
    "EXCLUDED_STATUSES",
    "OrderHistory",
    "SqlOrderHistory",
]
