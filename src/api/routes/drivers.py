from fastapi import APIRouter, Depends, status

from api.auth import verify_api_key
from api.dependencies import LifecycleDep, RegistryDep
from api.models.drivers import (
    DriverAvailabilityRequest,
    DriverEarningsResponse,
    DriverRegisterRequest,
    DriverResponse,
)
from api.models.trips import TripResponse
from geo.distance import Coordinate

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("", response_model=DriverResponse, status_code=status.HTTP_201_CREATED)
def register_driver(body: DriverRegisterRequest, registry: RegistryDep) -> DriverResponse:
    """Register a driver, or re-activate a deactivated one."""
    record = registry.register_driver(body.driver_id, body.name)
    return DriverResponse.from_record(record)


@router.get("/{driver_id}", response_model=DriverResponse)
def get_driver(driver_id: str, registry: RegistryDep) -> DriverResponse:
    return DriverResponse.from_record(registry.get(driver_id))


@router.put("/{driver_id}/availability", response_model=DriverResponse)
def set_availability(
    driver_id: str, body: DriverAvailabilityRequest, registry: RegistryDep
) -> DriverResponse:
    record = registry.set_availability(driver_id, body.available)
    return DriverResponse.from_record(record)


@router.put("/{driver_id}/location", response_model=DriverResponse)
def report_location(driver_id: str, body: Coordinate, registry: RegistryDep) -> DriverResponse:
    record = registry.report_location(driver_id, body)
    return DriverResponse.from_record(record)


@router.delete("/{driver_id}", response_model=DriverResponse)
def deactivate_driver(driver_id: str, registry: RegistryDep) -> DriverResponse:
    """Deactivate a driver. Records are kept for trip history."""
    return DriverResponse.from_record(registry.deactivate(driver_id))


@router.get("/{driver_id}/trips", response_model=list[TripResponse])
def list_driver_trips(driver_id: str, lifecycle: LifecycleDep) -> list[TripResponse]:
    return lifecycle.list_driver_trips(driver_id)


@router.get("/{driver_id}/earnings", response_model=DriverEarningsResponse)
def driver_earnings(driver_id: str, lifecycle: LifecycleDep) -> DriverEarningsResponse:
    return DriverEarningsResponse(
        driver_id=driver_id,
        total=lifecycle.driver_earnings(driver_id),
        currency=lifecycle.currency,
    )
