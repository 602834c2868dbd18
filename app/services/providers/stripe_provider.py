"""
Stripe card payment adapter.

PaymentIntents are created server-side; the client confirms them with the
returned client secret. Webhooks are verified by the stripe library.
"""

from decimal import Decimal

import stripe
from structlog import get_logger

from app.config import Settings
from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentInitiation, PaymentRequest, WebhookEvent
from app.services.payment_provider import require_config

logger = get_logger(__name__)

# Currencies Stripe expects in whole units rather than cents
ZERO_DECIMAL_CURRENCIES = frozenset({"XOF", "XAF", "JPY", "KRW", "GNF", "RWF"})

_EVENT_STATUS = {
    "payment_intent.succeeded": PaymentStatus.COMPLETED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.FAILED,
}


def to_stripe_amount(amount: Decimal, currency: str) -> int:
    """Amount in the smallest unit Stripe expects for the currency."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.to_integral_value())
    return int((amount * 100).to_integral_value())


def intent_status(status: str | None) -> PaymentStatus:
    """Map a PaymentIntent status."""
    if status == "succeeded":
        return PaymentStatus.COMPLETED
    if status == "canceled":
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


class StripeProvider:
    """Stripe implementation of PaymentProvider."""

    gateway_id = "stripe"
    reference_prefix = "ST"
    signature_header = "Stripe-Signature"

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        if api_key:
            stripe.api_key = api_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeProvider":
        """Build from environment configuration."""
        return cls(api_key=settings.stripe_api_key, webhook_secret=settings.stripe_webhook_secret)

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """Create a PaymentIntent keyed by our transaction reference."""
        require_config("Stripe", api_key=self.api_key)
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_stripe_amount(request.amount, request.currency),
                currency=request.currency.lower(),
                description=request.description or None,
                receipt_email=request.customer_email or None,
                metadata={"transaction_reference": request.reference},
                idempotency_key=request.reference,
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_intent_failed",
                reference=request.reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe payment failed: {exc}") from exc

        logger.info(
            "stripe_payment_intent_created",
            reference=request.reference,
            payment_intent_id=intent.id,
            status=intent.status,
        )
        return PaymentInitiation(
            provider_transaction_id=intent.id,
            status=intent_status(intent.status),
            raw={"client_secret": intent.client_secret or "", "status": intent.status},
        )

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Retrieve the PaymentIntent."""
        require_config("Stripe", api_key=self.api_key)
        try:
            intent = stripe.PaymentIntent.retrieve(transaction_id)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_status_failed",
                payment_intent_id=transaction_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to get payment status: {exc}") from exc
        return intent_status(intent.status)

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify via stripe.Webhook.construct_event and map the event."""
        if not self.webhook_secret:
            raise WebhookVerificationError("stripe webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        intent = event.data.object
        metadata = intent.get("metadata") or {}
        status = _EVENT_STATUS.get(event.type, intent_status(intent.get("status")))

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)
        try:
            return WebhookEvent(
                status=status,
                reference=metadata.get("transaction_reference"),
                provider_transaction_id=intent.get("id"),
                raw={"event_id": event.id, "event_type": event.type},
            )
        except ValueError as exc:
            raise WebhookVerificationError(f"Stripe event has no payment id: {exc}") from exc
