from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from api.rate_limit import limiter
from main import build_app, build_services
from payments.momo_client import MoMoClient
from settings import get_settings


@pytest.fixture(autouse=True)
def _fresh_rate_limiter():
    """Rate limit counters are module-global; start every test from zero."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def mock_momo_client():
    client = Mock(spec=MoMoClient)
    client.request_to_pay.return_value = ("ref-1", "SUCCESSFUL")
    return client


@pytest.fixture
def services(session_factory, mock_publisher, mock_momo_client):
    return build_services(
        get_settings(),
        session_factory=session_factory,
        publisher=mock_publisher,
        momo_client=mock_momo_client,
    )


@pytest.fixture
def test_client(services):
    return TestClient(build_app(services))


@pytest.fixture
def auth_headers():
    return {"X-API-Key": "test-api-key"}


@pytest.fixture
def api_driver(test_client, auth_headers):
    """Register an available driver at the given location through the API."""

    def _create(driver_id, lat, lon):
        test_client.post("/drivers", json={"driver_id": driver_id}, headers=auth_headers)
        test_client.put(
            f"/drivers/{driver_id}/availability", json={"available": True}, headers=auth_headers
        )
        return test_client.put(
            f"/drivers/{driver_id}/location", json={"lat": lat, "lon": lon}, headers=auth_headers
        )

    return _create


@pytest.fixture
def trip_payload():
    return {
        "client_id": "c1",
        "pickup": {
            "coordinates": {"lat": -1.9441, "lon": 30.0619},
            "address": "Kigali Convention Centre",
        },
        "destination": {
            "coordinates": {"lat": -1.9706, "lon": 30.1044},
            "address": "Kigali International Airport",
        },
        "distance_km": 5.0,
    }
