"""
Wave Checkout adapter.

Checkout sessions redirect the customer to Wave. Webhooks carry a
Wave-Signature header of the form "t=<timestamp>,v1=<hex hmac>" where the
HMAC covers the timestamp followed by the raw body. Events whose timestamp
is further than the tolerance from the current time are rejected as replays.
"""

import hmac
import json
import time
from collections.abc import Callable

import httpx
from structlog import get_logger

from app.config import Settings
from app.exceptions import WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentInitiation, PaymentRequest, WebhookEvent
from app.services.payment_provider import (
    hmac_sha256_hex,
    request_json,
    require_config,
    return_url,
)

logger = get_logger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

_EVENT_STATUS = {
    "checkout.session.completed": PaymentStatus.COMPLETED,
    "checkout.session.payment_failed": PaymentStatus.FAILED,
}


def parse_wave_signature(header: str) -> tuple[str, list[str]]:
    """Split a Wave-Signature header into its timestamp and v1 signatures."""
    timestamp = ""
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def session_status(data: dict) -> PaymentStatus:
    """Status of a checkout session object."""
    if data.get("payment_status") == "succeeded":
        return PaymentStatus.COMPLETED
    if data.get("checkout_status") == "expired" or data.get("payment_status") == "cancelled":
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


class WaveProvider:
    """Wave implementation of PaymentProvider."""

    gateway_id = "wave_money"
    reference_prefix = "WV"
    signature_header = "Wave-Signature"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        webhook_secret: str,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "WaveProvider":
        """Build from environment configuration."""
        return cls(
            http_client=http_client,
            base_url=settings.wave_base_url,
            api_key=settings.wave_api_key,
            webhook_secret=settings.wave_webhook_secret,
            tolerance_seconds=settings.wave_webhook_tolerance_seconds,
        )

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """Open a checkout session."""
        require_config("Wave", api_key=self.api_key)
        payload = {
            "amount": str(request.amount),
            "currency": request.currency,
            "client_reference": request.reference,
            "success_url": return_url(),
            "error_url": return_url(),
        }
        data = await request_json(
            self.http_client,
            "POST",
            f"{self.base_url}/checkout/sessions",
            self.gateway_id,
            json=payload,
            headers=self._headers(),
        )

        session_id = str(data.get("id") or request.reference)
        logger.info("wave_checkout_created", reference=request.reference, session_id=session_id)
        return PaymentInitiation(
            provider_transaction_id=session_id,
            status=session_status(data),
            payment_url=data.get("wave_launch_url"),
            raw=data,
        )

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Fetch the checkout session."""
        data = await request_json(
            self.http_client,
            "GET",
            f"{self.base_url}/checkout/sessions/{transaction_id}",
            self.gateway_id,
            headers=self._headers(),
        )
        return session_status(data)

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify the t=,v1= signature and its timestamp, then parse the event."""
        if not self.webhook_secret:
            raise WebhookVerificationError("wave_money webhook secret is not configured")

        timestamp, candidates = parse_wave_signature(signature or "")
        if not timestamp or not candidates:
            raise WebhookVerificationError("Malformed Wave-Signature header")

        expected = hmac_sha256_hex(self.webhook_secret, timestamp.encode() + payload)
        if not any(hmac.compare_digest(expected, c.lower()) for c in candidates):
            logger.warning("webhook_signature_mismatch", gateway_id=self.gateway_id)
            raise WebhookVerificationError("Invalid wave_money webhook signature")

        try:
            signed_at = int(timestamp)
        except ValueError as exc:
            raise WebhookVerificationError("Malformed Wave-Signature header") from exc
        age = self._clock() - signed_at
        if abs(age) > self.tolerance_seconds:
            logger.warning(
                "webhook_timestamp_outside_tolerance", gateway_id=self.gateway_id, age_seconds=age
            )
            raise WebhookVerificationError("Wave webhook timestamp outside the tolerance window")

        try:
            body = json.loads(payload)
            session = body.get("data") or {}
            status = _EVENT_STATUS.get(body.get("type", ""), session_status(session))
            return WebhookEvent(
                status=status,
                reference=session.get("client_reference"),
                provider_transaction_id=session.get("id"),
                raw=body,
            )
        except (ValueError, AttributeError) as exc:
            raise WebhookVerificationError(f"Malformed Wave event: {exc}") from exc
