from pydantic import BaseModel, Field

from geo.distance import Coordinate
from payments.models import PaymentRequest, PaymentResult
from trip import CancellationActor, Place, Trip, TripStatus


class TripRequest(BaseModel):
    client_id: str = Field(min_length=1, max_length=128)
    pickup: Place
    destination: Place
    distance_km: float | None = Field(default=None, ge=0)


class OfferResponseRequest(BaseModel):
    driver_id: str = Field(min_length=1)
    accept: bool


class AdvanceRequest(BaseModel):
    driver_id: str = Field(min_length=1)
    status: TripStatus


class DriverLocationRequest(BaseModel):
    location: Coordinate
    driver_id: str | None = None


class CancelRequest(BaseModel):
    initiator: CancellationActor
    reason: str | None = Field(default=None, max_length=500)


TripResponse = Trip

__all__ = [
    "AdvanceRequest",
    "CancelRequest",
    "DriverLocationRequest",
    "OfferResponseRequest",
    "PaymentRequest",
    "PaymentResult",
    "TripRequest",
    "TripResponse",
]
