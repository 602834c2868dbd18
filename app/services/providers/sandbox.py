"""
Sandbox adapter.

Stands in for any gateway when PAYMENTS_SANDBOX is enabled. No network;
every payment completes on the first status check.
"""

import json

from structlog import get_logger

from app.config import settings
from app.exceptions import WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentInitiation, PaymentRequest, WebhookEvent
from app.services.payment_provider import verify_hmac_signature

logger = get_logger(__name__)

SANDBOX_WEBHOOK_SECRET = "sandbox-webhook-secret"


class SandboxProvider:
    """Deterministic in-process implementation of PaymentProvider."""

    reference_prefix = "SBX"
    signature_header = "X-Sandbox-Signature"

    def __init__(self, gateway_id: str) -> None:
        self.gateway_id = gateway_id

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """Accept the payment and point at a fake checkout page."""
        logger.info("sandbox_payment_initiated", gateway_id=self.gateway_id, reference=request.reference)
        return PaymentInitiation(
            provider_transaction_id=f"sandbox-{request.reference}",
            status=PaymentStatus.PENDING,
            payment_url=f"{settings.public_base_url.rstrip('/')}/payment/sandbox/{request.reference}",
            raw={"sandbox": True, "gateway_id": self.gateway_id},
        )

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Sandbox payments always succeed."""
        return PaymentStatus.COMPLETED

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """HMAC-SHA256 with the fixed sandbox secret."""
        verify_hmac_signature(SANDBOX_WEBHOOK_SECRET, payload, signature, self.gateway_id)
        try:
            body = json.loads(payload)
            return WebhookEvent(
                status=PaymentStatus(body.get("status", PaymentStatus.COMPLETED.value)),
                reference=body.get("reference"),
                provider_transaction_id=body.get("transaction_id"),
                raw=body,
            )
        except (ValueError, AttributeError) as exc:
            raise WebhookVerificationError(f"Malformed sandbox notification: {exc}") from exc
