from unittest.mock import patch

import pytest


@pytest.mark.unit
class TestApiKey:
    def test_valid_api_key(self, test_client, auth_headers):
        """Accepts valid API key."""
        response = test_client.post("/drivers", json={"driver_id": "d1"}, headers=auth_headers)
        assert response.status_code == 201

    def test_invalid_api_key(self, test_client):
        """Rejects invalid API key."""
        response = test_client.get("/trips/t1", headers={"X-API-Key": "wrong-key"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_missing_api_key(self, test_client):
        """Rejects missing API key."""
        response = test_client.get("/trips/t1")
        assert response.status_code == 422

    def test_case_sensitive_key(self, test_client):
        response = test_client.get("/trips/t1", headers={"X-API-Key": "TEST-API-KEY"})
        assert response.status_code == 401

    def test_health_endpoint_no_auth(self, test_client):
        """Health endpoint does not require auth."""
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/drivers/d1"),
            ("get", "/clients/c1/trips"),
            ("get", "/notifications/client/c1"),
            ("get", "/health/detailed"),
            ("get", "/metrics/prometheus"),
        ],
    )
    def test_endpoints_require_auth(self, test_client, method, path):
        response = getattr(test_client, method)(path)
        assert response.status_code == 422

    def test_api_key_from_env(self, test_client):
        """Reads key from environment on every request."""
        with patch.dict("os.environ", {"API_KEY": "custom-env-key"}):
            response = test_client.get(
                "/clients/c1/trips", headers={"X-API-Key": "custom-env-key"}
            )
        assert response.status_code == 200


@pytest.mark.unit
class TestSecurityHeaders:
    def test_headers_present(self, test_client):
        response = test_client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"
