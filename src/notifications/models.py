"""Notification variants, discriminated on status."""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

RecipientRole = Literal["client", "driver"]
OfferStatus = Literal["pending", "accepted", "rejected"]
OfferOutcome = Literal["accepted", "rejected"]
PaymentStatus = Literal["success", "error"]
NotificationStatus = Literal["pending", "info", "accepted", "rejected", "success", "error"]


class _NotificationBase(BaseModel):
    notification_id: str
    recipient_role: RecipientRole
    recipient_id: str
    trip_id: str
    message: str
    read: bool = False
    created_at: datetime | None = None


class OfferNotification(_NotificationBase):
    """Trip offer sent to a driver; resolved once to accepted or rejected."""

    status: OfferStatus
    amount: float | None = None
    pickup_address: str | None = None
    destination_address: str | None = None
    resolved_at: datetime | None = None


class InfoNotification(_NotificationBase):
    """Plain status message."""

    status: Literal["info"]
    amount: float | None = None


class PaymentNotification(_NotificationBase):
    """Result of a payment attempt."""

    status: PaymentStatus
    amount: float | None = None
    reference_id: str | None = None


Notification = Annotated[
    OfferNotification | InfoNotification | PaymentNotification,
    Field(discriminator="status"),
]

NotificationAdapter: TypeAdapter[Notification] = TypeAdapter(Notification)
