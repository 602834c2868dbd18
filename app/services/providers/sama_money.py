"""
SAMA Money adapter.

Initiation requests carry an HMAC-SHA256 signature computed with the
merchant transaction key. Notifications are signed the same way over the body.
"""

import json

import httpx
from structlog import get_logger

from app.config import Settings
from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentInitiation, PaymentRequest, WebhookEvent
from app.services.payment_provider import (
    hmac_sha256_hex,
    map_status,
    normalize_mali_phone,
    notify_url,
    request_json,
    require_config,
    return_url,
    verify_hmac_signature,
)

logger = get_logger(__name__)

_COMPLETED = frozenset({"success", "successful", "completed", "paid"})
_FAILED = frozenset({"failed", "rejected", "expired", "cancelled", "canceled"})


class SamaMoneyProvider:
    """SAMA Money implementation of PaymentProvider."""

    gateway_id = "sama_money"
    reference_prefix = "SAMA"
    signature_header = "X-Sama-Signature"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        merchant_code: str,
        user_id: str,
        public_key: str,
        transaction_key: str,
        webhook_secret: str,
    ) -> None:
        self.http_client = http_client
        # SAMA paths are appended directly to a base ending in "/"
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.merchant_code = merchant_code
        self.user_id = user_id
        self.public_key = public_key
        self.transaction_key = transaction_key
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "SamaMoneyProvider":
        """Build from environment configuration."""
        return cls(
            http_client=http_client,
            base_url=settings.sama_money_base_url,
            merchant_code=settings.sama_money_merchant_code,
            user_id=settings.sama_money_user_id,
            public_key=settings.sama_money_public_key,
            transaction_key=settings.sama_money_transaction_key,
            webhook_secret=settings.sama_money_webhook_secret,
        )

    def sign(self, reference: str, amount: str) -> str:
        """Request signature over merchant code, reference and amount."""
        return hmac_sha256_hex(
            self.transaction_key, f"{self.merchant_code}{reference}{amount}".encode()
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "X-Merchant-Code": self.merchant_code,
            "X-User-Id": self.user_id,
            "X-Public-Key": self.public_key,
        }

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """Send a payment request to the customer's wallet."""
        require_config(
            "SAMA Money",
            merchant_code=self.merchant_code,
            user_id=self.user_id,
            transaction_key=self.transaction_key,
        )
        phone = normalize_mali_phone(request.customer_phone)
        if not phone:
            raise PaymentProviderError("Customer phone number is required for SAMA Money")

        amount = str(request.amount)
        payload = {
            "merchant_code": self.merchant_code,
            "user_id": self.user_id,
            "amount": amount,
            "currency": request.currency,
            "customer_phone": phone,
            "customer_name": request.customer_name,
            "customer_email": request.customer_email,
            "transaction_reference": request.reference,
            "description": request.description,
            "callback_url": notify_url(self.gateway_id),
            "return_url": return_url(),
            "signature": self.sign(request.reference, amount),
        }
        data = await request_json(
            self.http_client,
            "POST",
            f"{self.base_url}payment/initiate",
            self.gateway_id,
            json=payload,
            headers=self._headers(),
        )

        transaction_id = str(data.get("transactionId") or data.get("transaction_id") or request.reference)
        logger.info(
            "sama_money_payment_initiated",
            reference=request.reference,
            transaction_id=transaction_id,
        )
        return PaymentInitiation(
            provider_transaction_id=transaction_id,
            status=PaymentStatus.PENDING,
            payment_url=data.get("paymentUrl") or data.get("payment_url"),
            instructions=data.get("message"),
            raw=data,
        )

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Query the payment status endpoint."""
        data = await request_json(
            self.http_client,
            "GET",
            f"{self.base_url}payment/status/{transaction_id}",
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
                reference=body.get("transaction_reference"),
                provider_transaction_id=body.get("transactionId") or body.get("transaction_id"),
                raw=body,
            )
        except (ValueError, AttributeError) as exc:
            raise WebhookVerificationError(f"Malformed SAMA Money notification: {exc}") from exc
