"""
Payment Provider Protocol - Provider-agnostic interface.

Every gateway adapter (mobile money, card, bank transfer, sandbox) implements
PaymentProvider. Shared helpers cover references, phone numbers, HMAC
signatures and outbound HTTP.
"""

import hashlib
import hmac
import secrets
import string
import time
from typing import Any, Protocol

import httpx
from structlog import get_logger

from app.config import settings
from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentInitiation, PaymentRequest, WebhookEvent
from app.observability.metrics import metrics

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

# Shared outbound client (created lazily, closed on shutdown)
_http_client: httpx.AsyncClient | None = None


class PaymentProvider(Protocol):
    """
    Payment gateway adapter.

    Adapters raise PaymentProviderError for transport or provider failures
    and WebhookVerificationError for bad signatures.
    """

    gateway_id: str
    reference_prefix: str
    signature_header: str

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """
        Start a payment with the provider.

        Returns:
            Provider transaction id plus a redirect URL or instructions
        """
        ...

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Ask the provider where a payment stands."""
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify a notification's signature and parse it."""
        ...


# ============================================================================
# Helpers
# ============================================================================


def generate_transaction_reference(prefix: str) -> str:
    """<PREFIX>_<unix ms>_<9 base36 chars>."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def normalize_mali_phone(phone: str) -> str:
    """
    E.164 form for Malian numbers.

    "76 12 34 56" -> "+22376123456"; numbers already carrying 223 keep it.
    """
    digits = "".join(ch for ch in phone if ch.isdigit())
    if not digits:
        return ""
    if digits.startswith("223"):
        return f"+{digits}"
    if len(digits) == 8:
        return f"+223{digits}"
    return f"+{digits}"


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    """Hex HMAC-SHA256 digest."""
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_hmac_signature(secret: str, payload: bytes, signature: str, gateway_id: str) -> None:
    """
    Constant-time check of a hex HMAC-SHA256 signature over the raw body.

    Raises:
        WebhookVerificationError: Missing secret, missing or wrong signature
    """
    if not secret:
        raise WebhookVerificationError(f"{gateway_id} webhook secret is not configured")
    if not signature:
        raise WebhookVerificationError(f"{gateway_id} webhook signature missing")

    expected = hmac_sha256_hex(secret, payload)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        logger.warning("webhook_signature_mismatch", gateway_id=gateway_id)
        raise WebhookVerificationError(f"Invalid {gateway_id} webhook signature")


def map_status(
    value: Any, completed: frozenset[str], failed: frozenset[str]
) -> PaymentStatus:
    """Map a provider status string onto pending/completed/failed."""
    normalized = str(value or "").strip().lower()
    if normalized in completed:
        return PaymentStatus.COMPLETED
    if normalized in failed:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def require_config(gateway_name: str, **values: str) -> None:
    """Raise if any named credential is empty."""
    missing = sorted(name for name, value in values.items() if not value)
    if missing:
        raise PaymentProviderError(f"{gateway_name} is not configured (missing {', '.join(missing)})")


def get_provider_http_client() -> httpx.AsyncClient:
    """Shared client for provider calls."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    return _http_client


async def close_provider_http_client() -> None:
    """Close the shared client (graceful shutdown)."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    gateway_id: str,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Call a provider endpoint and decode its JSON body.

    Raises:
        PaymentProviderError: Transport error, non-2xx status or non-JSON body
    """
    start = time.time()
    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as exc:
        body = exc.response.text[:200]
        logger.error(
            "provider_http_error",
            gateway_id=gateway_id,
            status_code=exc.response.status_code,
            body_preview=body,
        )
        raise PaymentProviderError(
            f"{gateway_id} API error: {exc.response.status_code} - {body}"
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("provider_transport_error", gateway_id=gateway_id, error=str(exc))
        raise PaymentProviderError(f"{gateway_id} unreachable: {exc}") from exc
    except ValueError as exc:
        logger.error("provider_invalid_json", gateway_id=gateway_id, error=str(exc))
        raise PaymentProviderError(f"{gateway_id} returned an invalid response") from exc
    finally:
        metrics.record_provider_call(gateway_id, time.time() - start)

    if not isinstance(data, dict):
        raise PaymentProviderError(f"{gateway_id} returned an unexpected payload")
    return data


def return_url() -> str:
    """Where providers send the customer after paying."""
    return f"{settings.public_base_url.rstrip('/')}/payment/return"


def notify_url(gateway_id: str) -> str:
    """Webhook URL registered with a provider."""
    return f"{settings.api_base_url.rstrip('/')}/v1/payments/webhooks/{gateway_id}"
