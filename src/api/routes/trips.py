from fastapi import APIRouter, Depends, Request, status

from api.auth import verify_api_key
from api.dependencies import LifecycleDep, PaymentServiceDep
from api.models.trips import (
    AdvanceRequest,
    CancelRequest,
    DriverLocationRequest,
    OfferResponseRequest,
    PaymentRequest,
    PaymentResult,
    TripRequest,
    TripResponse,
)
from api.rate_limit import limiter
from payments.models import PaymentRecord

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/trips", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def request_trip(request: Request, body: TripRequest, lifecycle: LifecycleDep) -> TripResponse:
    """Request a ride; the nearest available driver receives the offer.

    Returns 503 when no driver is available; no trip is created then.
    """
    return lifecycle.request_trip(body.client_id, body.pickup, body.destination, body.distance_km)


@router.get("/trips/{trip_id}", response_model=TripResponse)
def get_trip(trip_id: str, lifecycle: LifecycleDep) -> TripResponse:
    return lifecycle.get_trip(trip_id)


@router.get("/clients/{client_id}/trips", response_model=list[TripResponse])
def list_client_trips(client_id: str, lifecycle: LifecycleDep) -> list[TripResponse]:
    return lifecycle.list_client_trips(client_id)


@router.post("/trips/{trip_id}/offer-response", response_model=TripResponse)
def respond_to_offer(
    trip_id: str, body: OfferResponseRequest, lifecycle: LifecycleDep
) -> TripResponse:
    return lifecycle.respond_to_offer(trip_id, body.driver_id, body.accept)


@router.post("/trips/{trip_id}/advance", response_model=TripResponse)
def advance_trip(trip_id: str, body: AdvanceRequest, lifecycle: LifecycleDep) -> TripResponse:
    return lifecycle.advance(trip_id, body.driver_id, body.status)


@router.put("/trips/{trip_id}/driver-location", response_model=TripResponse)
def update_driver_location(
    trip_id: str, body: DriverLocationRequest, lifecycle: LifecycleDep
) -> TripResponse:
    return lifecycle.update_driver_location(trip_id, body.location, body.driver_id)


@router.post("/trips/{trip_id}/cancel", response_model=TripResponse)
def cancel_trip(trip_id: str, body: CancelRequest, lifecycle: LifecycleDep) -> TripResponse:
    return lifecycle.cancel(trip_id, body.initiator, body.reason)


@router.post("/trips/{trip_id}/payment", response_model=PaymentResult)
@limiter.limit("10/minute")
def pay_trip(
    request: Request, trip_id: str, body: PaymentRequest, payments: PaymentServiceDep
) -> PaymentResult:
    """Collect the trip's settled amount through mobile money."""
    return payments.pay(trip_id, body.phone_number, body.payment_method)


@router.get("/trips/{trip_id}/payments", response_model=list[PaymentRecord])
def list_trip_payments(trip_id: str, payments: PaymentServiceDep) -> list[PaymentRecord]:
    return payments.list_payments(trip_id)
