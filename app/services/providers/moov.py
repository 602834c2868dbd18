"""
Moov Money adapter.

Push-payment requests to the customer's handset; HMAC-SHA256 notifications.
"""

import json

import httpx
from structlog import get_logger

from app.config import Settings
from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentInitiation, PaymentRequest, WebhookEvent
from app.services.payment_provider import (
    map_status,
    normalize_mali_phone,
    notify_url,
    request_json,
    require_config,
    verify_hmac_signature,
)

logger = get_logger(__name__)

_COMPLETED = frozenset({"success", "successful", "completed"})
_FAILED = frozenset({"failed", "rejected", "expired", "cancelled"})


class MoovMoneyProvider:
    """Moov Money implementation of PaymentProvider."""

    gateway_id = "moov_money"
    reference_prefix = "MV"
    signature_header = "X-Moov-Signature"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        merchant_id: str,
        webhook_secret: str,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.merchant_id = merchant_id
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "MoovMoneyProvider":
        """Build from environment configuration."""
        return cls(
            http_client=http_client,
            base_url=settings.moov_base_url,
            api_key=settings.moov_api_key,
            merchant_id=settings.moov_merchant_id,
            webhook_secret=settings.moov_webhook_secret,
        )

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """Push a payment request to the customer's phone."""
        require_config("Moov Money", api_key=self.api_key, merchant_id=self.merchant_id)
        phone = normalize_mali_phone(request.customer_phone)
        if not phone:
            raise PaymentProviderError("Customer phone number is required for Moov Money")

        payload = {
            "merchant_id": self.merchant_id,
            "amount": str(request.amount),
            "currency": request.currency,
            "msisdn": phone,
            "reference": request.reference,
            "description": request.description,
            "callback_url": notify_url(self.gateway_id),
        }
        data = await request_json(
            self.http_client,
            "POST",
            f"{self.base_url}/payments",
            self.gateway_id,
            json=payload,
            headers=self._headers(),
        )

        transaction_id = str(data.get("transaction_id") or request.reference)
        logger.info(
            "moov_money_payment_initiated",
            reference=request.reference,
            transaction_id=transaction_id,
        )
        return PaymentInitiation(
            provider_transaction_id=transaction_id,
            status=map_status(data.get("status"), _COMPLETED, _FAILED),
            instructions="Confirm the payment on your phone with your Moov Money PIN",
            raw=data,
        )

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Fetch the payment."""
        data = await request_json(
            self.http_client,
            "GET",
            f"{self.base_url}/payments/{transaction_id}",
            self.gateway_id,
            headers=self._headers(),
        )
        return map_status(data.get("status"), _COMPLETED, _FAILED)

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Check the HMAC signature and parse the notification."""
        verify_hmac_signature(self.webhook_secret, payload, signature, self.gateway_id)
        try:
            body = json.loads(payload)
            return WebhookEvent(
                status=map_status(body.get("status"), _COMPLETED, _FAILED),
                reference=body.get("reference"),
                provider_transaction_id=body.get("transaction_id"),
                raw=body,
            )
        except (ValueError, AttributeError) as exc:
            raise WebhookVerificationError(f"Malformed Moov Money notification: {exc}") from exc
