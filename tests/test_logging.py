"""
Tests for the structlog processors.
"""

import structlog

from app.config import settings
from app.observability.logging import REDACTED, add_app_context, log_context, redact_secrets


class TestRedactSecrets:
    """Tests for redact_secrets."""

    def test_top_level_keys_masked(self):
        event = redact_secrets(None, "info", {"event": "x", "password": "hunter22", "email": "a@b.ml"})
        assert event["password"] == REDACTED
        assert event["email"] == "a@b.ml"

    def test_key_match_ignores_case(self):
        event = redact_secrets(None, "info", {"event": "x", "Authorization": "Bearer abc"})
        assert event["Authorization"] == REDACTED

    def test_nested_values_masked(self):
        event = redact_secrets(
            None,
            "info",
            {
                "event": "provider_response",
                "body": {"access_token": "tok", "status": "SUCCESS"},
                "errors": [{"input": {"confirm_password": "x", "email": "a@b.ml"}}],
            },
        )
        assert event["body"] == {"access_token": REDACTED, "status": "SUCCESS"}
        assert event["errors"][0]["input"] == {"confirm_password": REDACTED, "email": "a@b.ml"}

    def test_plain_values_untouched(self):
        event = redact_secrets(None, "info", {"event": "tokens_purchased", "token_amount": 10})
        assert event == {"event": "tokens_purchased", "token_amount": 10}


class TestAppContext:
    """Tests for add_app_context and log_context."""

    def test_service_and_version(self):
        event = add_app_context(None, "info", {"event": "x"})
        assert event["service"] == settings.service_name
        assert event["version"] == settings.api_version

    def test_log_context_binds_and_unbinds(self):
        with log_context(request_id="req-1"):
            assert structlog.contextvars.get_contextvars()["request_id"] == "req-1"
        assert "request_id" not in structlog.contextvars.get_contextvars()
