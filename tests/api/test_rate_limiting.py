"""Tests for API rate limiting with slowapi.

- Trip requests: 30/minute
- Payments: 10/minute
- /health: excluded (unlimited)
"""

import pytest

PAYMENT_BODY = {"phone_number": "250788123456"}


@pytest.mark.unit
class TestPaymentRateLimit:
    def test_eleventh_request_returns_429(self, test_client, auth_headers):
        """Requests beyond 10/minute to the payment endpoint are rejected."""
        for i in range(10):
            resp = test_client.post("/trips/t1/payment", json=PAYMENT_BODY, headers=auth_headers)
            assert resp.status_code != 429, f"Request {i + 1} was rate limited"

        resp = test_client.post("/trips/t1/payment", json=PAYMENT_BODY, headers=auth_headers)
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "60"

    def test_limits_are_per_api_key(self, test_client, auth_headers):
        for _ in range(11):
            test_client.post("/trips/t1/payment", json=PAYMENT_BODY, headers=auth_headers)

        # A request without a valid key is keyed separately and fails auth instead
        resp = test_client.post(
            "/trips/t1/payment", json=PAYMENT_BODY, headers={"X-API-Key": "other"}
        )
        assert resp.status_code == 401


@pytest.mark.unit
class TestTripRequestRateLimit:
    def test_thirty_first_request_returns_429(self, test_client, auth_headers, trip_payload):
        for _ in range(30):
            resp = test_client.post("/trips", json=trip_payload, headers=auth_headers)
            assert resp.status_code == 503

        resp = test_client.post("/trips", json=trip_payload, headers=auth_headers)
        assert resp.status_code == 429


@pytest.mark.unit
def test_health_not_rate_limited(test_client):
    for _ in range(50):
        assert test_client.get("/health").status_code == 200
