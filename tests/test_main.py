"""
Tests for the application shell: root, metrics and validation errors.
"""

from app.config import settings
from app.main import sanitize_validation_error


class TestRoot:
    """Tests for GET /."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    def test_metrics_exposed(self, client, monkeypatch):
        monkeypatch.setattr(settings, "metrics_enabled", True)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "elverra_http_requests_total" in response.text

    def test_metrics_disabled(self, client, monkeypatch):
        monkeypatch.setattr(settings, "metrics_enabled", False)

        assert client.get("/metrics").status_code == 404


class TestValidationErrors:
    """Tests for the RequestValidationError handler."""

    def test_password_never_echoed(self, client):
        """Validation failures drop password fields from the response."""
        response = client.post(
            "/v1/register",
            json={"full_name": "x" * 300, "password": "hunter22", "confirm_password": "hunter22"},
        )

        assert response.status_code == 422
        assert "hunter22" not in response.text

    def test_password_field_error_has_no_input(self, client):
        response = client.post(
            "/v1/auth/signin", json={"email": "a@example.com", "password": ""}
        )

        errors = response.json()["detail"]
        assert response.status_code == 422
        assert errors[0]["loc"][-1] == "password"
        assert "input" not in errors[0]


class TestSanitizeValidationError:
    """Tests for sanitize_validation_error."""

    def test_password_location_drops_input(self):
        error = {"type": "string_too_short", "loc": ("body", "password"), "msg": "short", "input": "abc"}
        assert "input" not in sanitize_validation_error(error)

    def test_body_input_loses_password_keys(self):
        error = {
            "type": "missing",
            "loc": ("body", "tier"),
            "msg": "Field required",
            "input": {"email": "a@b.ml", "password": "hunter22", "confirm_password": "hunter22"},
        }
        assert sanitize_validation_error(error)["input"] == {"email": "a@b.ml"}

    def test_ctx_values_stringified(self):
        error = {"type": "greater_than", "loc": ("body", "amount"), "msg": "m", "input": 0, "ctx": {"gt": 0}}
        assert sanitize_validation_error(error)["ctx"] == {"gt": "0"}
