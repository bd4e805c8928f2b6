"""Repository layer for database CRUD operations."""

from .driver_repository import DriverRepository
from .notification_repository import NotificationRepository
from .payment_repository import PaymentRepository
from .trip_repository import ANY_DRIVER, TripRepository

__all__ = [
    "ANY_DRIVER",
    "DriverRepository",
    "NotificationRepository",
    "PaymentRepository",
    "TripRepository",
]
