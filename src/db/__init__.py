"""Database persistence module."""

from .database import init_database
from .schema import Driver, Notification, Payment, ServiceMetadata, Trip
from .transaction import transaction

__all__ = [
    "init_database",
    "Driver",
    "Notification",
    "Payment",
    "Trip",
    "ServiceMetadata",
    "transaction",
]
