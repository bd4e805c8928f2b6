"""FastAPI dependency injection providers."""

from typing import Annotated, Any

from fastapi import Depends, Request


def get_registry(request: Request) -> Any:
    """Retrieve DriverRegistry from app state."""
    return request.app.state.registry


def get_lifecycle(request: Request) -> Any:
    """Retrieve TripLifecycle from app state."""
    return request.app.state.lifecycle


def get_relay(request: Request) -> Any:
    """Retrieve NotificationRelay from app state."""
    return request.app.state.relay


def get_payment_service(request: Request) -> Any:
    """Retrieve PaymentService from app state."""
    return request.app.state.payment_service


RegistryDep = Annotated[Any, Depends(get_registry)]
LifecycleDep = Annotated[Any, Depends(get_lifecycle)]
RelayDep = Annotated[Any, Depends(get_relay)]
PaymentServiceDep = Annotated[Any, Depends(get_payment_service)]
