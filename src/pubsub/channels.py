"""Pub/sub channel definitions and message schemas for connected apps."""

from pydantic import BaseModel

# Channel names
CHANNEL_NOTIFICATIONS = "notifications"
CHANNEL_TRIP_UPDATES = "trip-updates"
CHANNEL_DRIVER_UPDATES = "driver-updates"

ALL_CHANNELS = [
    CHANNEL_NOTIFICATIONS,
    CHANNEL_TRIP_UPDATES,
    CHANNEL_DRIVER_UPDATES,
]


class NotificationMessage(BaseModel):
    """A stored notification pushed to its recipient's app."""

    notification_id: str
    recipient_role: str
    recipient_id: str
    trip_id: str
    status: str
    message: str
    amount: float | None = None
    timestamp: str


class TripUpdateMessage(BaseModel):
    """Trip status change with the parties involved."""

    trip_id: str
    event_type: str
    status: str
    client_id: str
    driver_id: str | None
    amount: float
    driver_location: tuple[float, float] | None = None
    timestamp: str


class DriverUpdateMessage(BaseModel):
    """Driver location and availability update."""

    driver_id: str
    location: tuple[float, float] | None
    available: bool
    trip_id: str | None
    timestamp: str
