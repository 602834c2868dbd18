"""
Orange Money Web Payment adapter.

OAuth2 client-credentials tokens are cached until 90% of their lifetime.
Notifications are signed with HMAC-SHA256 over the raw body.
"""

import json
import time
from collections.abc import Callable

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
    return_url,
    verify_hmac_signature,
)

logger = get_logger(__name__)

_COMPLETED = frozenset({"success", "successful", "successfull", "completed"})
_FAILED = frozenset({"failed", "failure", "expired", "cancelled", "canceled"})

TOKEN_REFRESH_RATIO = 0.9


class OrangeMoneyProvider:
    """Orange Money implementation of PaymentProvider."""

    gateway_id = "orange_money"
    reference_prefix = "OM"
    signature_header = "X-Orange-Signature"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        oauth_url: str,
        client_id: str,
        client_secret: str,
        merchant_key: str,
        merchant_login: str,
        merchant_account: str,
        merchant_code: str,
        merchant_name: str,
        webhook_secret: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.oauth_url = oauth_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.merchant_key = merchant_key
        self.merchant_login = merchant_login
        self.merchant_account = merchant_account
        self.merchant_code = merchant_code
        self.merchant_name = merchant_name
        self.webhook_secret = webhook_secret
        self._clock = clock
        self._access_token: str | None = None
        self._token_expiry: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "OrangeMoneyProvider":
        """Build from environment configuration."""
        return cls(
            http_client=http_client,
            base_url=settings.orange_money_base_url,
            oauth_url=settings.orange_money_oauth_url,
            client_id=settings.orange_money_client_id,
            client_secret=settings.orange_money_client_secret,
            merchant_key=settings.orange_money_merchant_key,
            merchant_login=settings.orange_money_merchant_login,
            merchant_account=settings.orange_money_merchant_account,
            merchant_code=settings.orange_money_merchant_code,
            merchant_name=settings.orange_money_merchant_name,
            webhook_secret=settings.orange_money_webhook_secret,
        )

    async def _get_access_token(self) -> str:
        """Client-credentials token, reused until 90% of expires_in has passed."""
        if self._access_token and self._clock() < self._token_expiry:
            return self._access_token

        require_config(
            "Orange Money", client_id=self.client_id, client_secret=self.client_secret
        )
        data = await request_json(
            self.http_client,
            "POST",
            self.oauth_url,
            self.gateway_id,
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        token = data.get("access_token")
        if not token:
            raise PaymentProviderError("Orange Money OAuth response had no access_token")

        expires_in = float(data.get("expires_in", 3600))
        self._access_token = str(token)
        self._token_expiry = self._clock() + expires_in * TOKEN_REFRESH_RATIO

        logger.info("orange_money_token_refreshed", expires_in=expires_in)
        return self._access_token

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "X-Merchant-Code": self.merchant_code,
            "X-User-Id": self.merchant_login,
        }

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """Create a web payment and return the redirect URL."""
        require_config(
            "Orange Money",
            merchant_code=self.merchant_code,
            merchant_key=self.merchant_key,
        )
        phone = normalize_mali_phone(request.customer_phone)
        if not phone:
            raise PaymentProviderError("Customer phone number is required for Orange Money")

        token = await self._get_access_token()
        payload = {
            "merchant_key": self.merchant_key,
            "merchant_code": self.merchant_code,
            "merchant_name": self.merchant_name,
            "merchant_account": self.merchant_account,
            "merchant_login": self.merchant_login,
            "amount": str(request.amount),
            "currency": request.currency,
            "order_id": request.reference,
            "customer_phone": phone,
            "customer_name": request.customer_name,
            "customer_email": request.customer_email,
            "reference": request.description,
            "return_url": return_url(),
            "cancel_url": return_url(),
            "notif_url": notify_url(self.gateway_id),
            "lang": "fr",
        }
        data = await request_json(
            self.http_client,
            "POST",
            f"{self.base_url}/webpayment",
            self.gateway_id,
            json=payload,
            headers=self._headers(token),
        )

        transaction_id = str(data.get("pay_token") or data.get("txnid") or request.reference)
        logger.info(
            "orange_money_payment_initiated",
            reference=request.reference,
            transaction_id=transaction_id,
        )
        return PaymentInitiation(
            provider_transaction_id=transaction_id,
            status=PaymentStatus.PENDING,
            payment_url=data.get("payment_url"),
            raw=data,
        )

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Query the payment status endpoint."""
        token = await self._get_access_token()
        data = await request_json(
            self.http_client,
            "GET",
            f"{self.base_url}/payment/status/{transaction_id}",
            self.gateway_id,
            headers=self._headers(token),
        )
        return map_status(data.get("status"), _COMPLETED, _FAILED)

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Check the HMAC signature and parse the notification."""
        verify_hmac_signature(self.webhook_secret, payload, signature, self.gateway_id)
        try:
            body = json.loads(payload)
            return WebhookEvent(
                status=map_status(body.get("status"), _COMPLETED, _FAILED),
                reference=body.get("order_id") or body.get("transaction_reference"),
                provider_transaction_id=body.get("pay_token") or body.get("txnid"),
                raw=body,
            )
        except (ValueError, AttributeError) as exc:
            raise WebhookVerificationError(f"Malformed Orange Money notification: {exc}") from exc
