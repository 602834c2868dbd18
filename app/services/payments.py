"""
Payment Service - dispatch to gateway adapters and track payment status.

process_payment never raises for gateway problems: unknown or inactive
gateways and adapter failures come back as {success: false, error}.
Status only moves pending -> completed or pending -> failed. Completing a
membership payment activates the membership in the same transaction.
"""

from collections.abc import Callable
from uuid import UUID

import httpx
from sqlalchemy import ColumnElement, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Payment
from app.exceptions import (
    DuplicatePaymentError,
    InvalidPaymentTransitionError,
    PaymentProviderError,
    ResourceNotFoundError,
    UnsupportedGatewayError,
)
from app.models.api import (
    CreatePaymentRequest,
    MembershipTier,
    PaymentResponse,
    PaymentStatus,
    PaymentType,
)
from app.models.domain import PaymentRequest
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.gateway_registry import (
    FCFA_CURRENCIES,
    GatewayRegistry,
    calculate_fees,
    gateway_registry,
    round_money,
)
from app.services.membership import MembershipService, first_payment_amount
from app.services.payment_provider import (
    PaymentProvider,
    generate_transaction_reference,
    get_provider_http_client,
)
from app.services.providers.bank_transfer import BankTransferProvider
from app.services.providers.moov import MoovMoneyProvider
from app.services.providers.orange_money import OrangeMoneyProvider
from app.services.providers.sama_money import SamaMoneyProvider
from app.services.providers.sandbox import SandboxProvider
from app.services.providers.stripe_provider import StripeProvider
from app.services.providers.wave import WaveProvider

logger = get_logger(__name__)

ProviderFactory = Callable[[str], PaymentProvider | None]

_ADAPTER_IDS = frozenset(
    {"orange_money", "sama_money", "wave_money", "moov_money", "stripe", "bank_transfer"}
)

# Orange Money tokens are cached on the adapter, so it lives for the process
_orange_money: OrangeMoneyProvider | None = None


def build_provider(
    gateway_id: str,
    http_client: httpx.AsyncClient | None = None,
    sandbox: bool | None = None,
) -> PaymentProvider | None:
    """Adapter for a gateway id, or None when no adapter exists."""
    global _orange_money

    if gateway_id not in _ADAPTER_IDS:
        return None
    if settings.payments_sandbox if sandbox is None else sandbox:
        return SandboxProvider(gateway_id)

    client = http_client or get_provider_http_client()
    if gateway_id == "orange_money":
        if http_client is not None:
            return OrangeMoneyProvider.from_settings(settings, client)
        if _orange_money is None:
            _orange_money = OrangeMoneyProvider.from_settings(settings, client)
        return _orange_money
    if gateway_id == "sama_money":
        return SamaMoneyProvider.from_settings(settings, client)
    if gateway_id == "wave_money":
        return WaveProvider.from_settings(settings, client)
    if gateway_id == "moov_money":
        return MoovMoneyProvider.from_settings(settings, client)
    if gateway_id == "stripe":
        return StripeProvider.from_settings(settings)
    return BankTransferProvider.from_settings(settings)


def membership_price_error(request: CreatePaymentRequest) -> str | None:
    """Reason a membership payment request is refused, or None."""
    if request.payment_type != PaymentType.MEMBERSHIP:
        return None
    tier = request.membership_tier
    if tier is None:
        return "Membership payments require a membership tier"
    if request.currency not in FCFA_CURRENCIES:
        return f"Membership payments must be made in FCFA, not {request.currency}"
    expected = first_payment_amount(tier)
    if request.amount != expected:
        return (
            f"Amount {request.amount} does not match the {tier.value} membership price of {expected}"
        )
    return None


def failure(message: str, payment: Payment | None = None) -> PaymentResponse:
    """Normalized failure result."""
    return PaymentResponse(
        success=False,
        payment_id=payment.id if payment else None,
        transaction_id=payment.transaction_reference if payment else None,
        status=PaymentStatus(payment.status) if payment else None,
        gateway_response=dict(payment.gateway_response) if payment else {},
        error=message,
    )


def response_for(payment: Payment) -> PaymentResponse:
    """Normalized result for a stored payment."""
    status = PaymentStatus(payment.status)
    if status == PaymentStatus.FAILED:
        return failure(str(payment.gateway_response.get("error", "Payment failed")), payment)
    return PaymentResponse(
        success=True,
        payment_id=payment.id,
        transaction_id=payment.transaction_reference,
        payment_url=payment.payment_url,
        instructions=payment.gateway_response.get("instructions"),
        status=status,
        gateway_response=dict(payment.gateway_response),
    )


class PaymentService:
    """Payment orchestration over the gateway registry and adapters."""

    def __init__(
        self,
        session: AsyncSession,
        registry: GatewayRegistry | None = None,
        provider_factory: ProviderFactory | None = None,
    ) -> None:
        self.session = session
        self.registry = registry or gateway_registry
        self.provider_factory: ProviderFactory = provider_factory or build_provider

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def process_payment(self, user_id: UUID, request: CreatePaymentRequest) -> PaymentResponse:
        """
        Record a pending payment and hand it to the gateway's adapter.

        Returns:
            PaymentResponse; success is False for unknown or inactive
            gateways, unsupported currencies, membership payments that
            don't match the tier price and adapter failures

        Raises:
            DuplicatePaymentError: Idempotency key reused for a different payment
        """
        gateway_id = request.gateway_id
        await self.registry.ensure_loaded(self.session)

        gateway = self.registry.get_gateway_by_id(gateway_id)
        provider = self.provider_factory(gateway_id) if gateway else None
        if gateway is None or provider is None:
            logger.warning("payment_gateway_unsupported", gateway_id=gateway_id)
            return failure(f"Unsupported payment gateway: {gateway_id}")

        if not gateway.is_active:
            logger.warning("payment_gateway_inactive", gateway_id=gateway_id)
            return failure(f"Payment gateway is not active: {gateway_id}")

        if not gateway.supports_currency(request.currency):
            return failure(f"Currency {request.currency} is not supported by {gateway.name}")

        price_error = membership_price_error(request)
        if price_error is not None:
            logger.warning(
                "membership_payment_rejected",
                gateway_id=gateway_id,
                amount=str(request.amount),
                membership_tier=request.membership_tier,
                reason=price_error,
            )
            return failure(price_error)

        if request.idempotency_key:
            existing = await self._find_by_idempotency_key(user_id, request.idempotency_key)
            if existing is not None:
                if existing.amount != request.amount or existing.payment_method != gateway_id:
                    raise DuplicatePaymentError(existing.id, existing.amount)
                logger.info(
                    "payment_idempotent_replay",
                    payment_id=str(existing.id),
                    idempotency_key=request.idempotency_key,
                )
                return response_for(existing)

        fees = round_money(calculate_fees(gateway, request.amount))
        payment = Payment(
            user_id=user_id,
            payment_type=request.payment_type.value,
            payment_method=gateway_id,
            amount=request.amount,
            fees=fees,
            currency=request.currency,
            status=PaymentStatus.PENDING.value,
            transaction_reference=generate_transaction_reference(provider.reference_prefix),
            gateway_response={},
            idempotency_key=request.idempotency_key,
            membership_tier=request.membership_tier.value if request.membership_tier else None,
        )
        self.session.add(payment)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            if request.idempotency_key:
                raced = await self._find_by_idempotency_key(user_id, request.idempotency_key)
                if raced is not None:
                    return response_for(raced)
            raise

        with trace_operation(
            "payment_dispatch", gateway_id=gateway_id, reference=payment.transaction_reference
        ):
            return await self._dispatch(provider, payment, request)

    async def _dispatch(
        self, provider: PaymentProvider, payment: Payment, request: CreatePaymentRequest
    ) -> PaymentResponse:
        gateway_id = payment.payment_method
        provider_request = PaymentRequest(
            reference=payment.transaction_reference,
            amount=payment.amount + payment.fees,
            currency=payment.currency,
            description=request.description or f"Elverra {payment.payment_type} payment",
            customer_name=request.customer.name,
            customer_email=request.customer.email,
            customer_phone=request.customer.phone,
        )

        try:
            initiation = await provider.initiate(provider_request)
        except PaymentProviderError as exc:
            return await self._fail_dispatch(payment, exc.message)
        except Exception as exc:
            logger.error(
                "payment_dispatch_unexpected_error",
                gateway_id=gateway_id,
                payment_id=str(payment.id),
                error=str(exc),
                exc_info=True,
            )
            return await self._fail_dispatch(payment, str(exc) or type(exc).__name__)

        gateway_response = dict(initiation.raw)
        if initiation.instructions:
            gateway_response["instructions"] = initiation.instructions
        payment.provider_transaction_id = initiation.provider_transaction_id
        payment.payment_url = initiation.payment_url
        payment.gateway_response = gateway_response
        if initiation.status != PaymentStatus.PENDING:
            await self._transition(payment, initiation.status)
        await self.session.commit()

        metrics.record_payment_initiation(
            gateway_id, payment.payment_type, True, float(payment.amount)
        )
        logger.info(
            "payment_initiated",
            payment_id=str(payment.id),
            gateway_id=gateway_id,
            reference=payment.transaction_reference,
            amount=str(payment.amount),
            fees=str(payment.fees),
        )
        return response_for(payment)

    async def _fail_dispatch(self, payment: Payment, message: str) -> PaymentResponse:
        payment.status = PaymentStatus.FAILED.value
        payment.gateway_response = {"error": message}
        await self.session.commit()

        metrics.record_payment_initiation(
            payment.payment_method, payment.payment_type, False, float(payment.amount)
        )
        metrics.record_payment_status(payment.payment_method, PaymentStatus.FAILED.value)
        logger.error(
            "payment_initiation_failed",
            payment_id=str(payment.id),
            gateway_id=payment.payment_method,
            error=message,
        )
        return failure(message, payment)

    # ========================================================================
    # Status updates
    # ========================================================================

    async def refresh_status(self, user_id: UUID, payment_id: UUID) -> Payment:
        """Ask the adapter for the latest status and apply it."""
        payment = await self._lock_payment(Payment.id == payment_id, Payment.user_id == user_id)
        if payment is None:
            raise ResourceNotFoundError("Payment", str(payment_id))
        if payment.status != PaymentStatus.PENDING.value:
            await self.session.rollback()
            return payment

        provider = self.provider_factory(payment.payment_method)
        if provider is None:
            raise UnsupportedGatewayError(payment.payment_method)

        status = await provider.check_status(
            payment.provider_transaction_id or payment.transaction_reference
        )
        await self._transition(payment, status)
        await self.session.commit()
        return payment

    async def handle_webhook(self, gateway_id: str, payload: bytes, signature: str) -> Payment:
        """
        Verify a provider notification and apply its status.

        Raises:
            UnsupportedGatewayError: No adapter for gateway_id
            WebhookVerificationError: Bad signature or payload
            ResourceNotFoundError: No matching payment
        """
        provider = self.provider_factory(gateway_id)
        if provider is None:
            raise UnsupportedGatewayError(gateway_id)

        event = await provider.verify_webhook(payload, signature)

        matchers = []
        if event.reference:
            matchers.append(Payment.transaction_reference == event.reference)
        if event.provider_transaction_id:
            matchers.append(Payment.provider_transaction_id == event.provider_transaction_id)

        payment = await self._lock_payment(Payment.payment_method == gateway_id, or_(*matchers))
        if payment is None:
            logger.warning(
                "webhook_payment_not_found",
                gateway_id=gateway_id,
                reference=event.reference,
                provider_transaction_id=event.provider_transaction_id,
            )
            raise ResourceNotFoundError(
                "Payment", event.reference or event.provider_transaction_id or ""
            )

        await self._transition(payment, event.status)
        await self.session.commit()

        logger.info(
            "payment_webhook_processed",
            gateway_id=gateway_id,
            payment_id=str(payment.id),
            status=payment.status,
        )
        return payment

    async def confirm_bank_transfer(self, payment_id: UUID) -> Payment:
        """Administrator confirms a bank transfer arrived."""
        payment = await self._lock_payment(
            Payment.id == payment_id, Payment.payment_method == "bank_transfer"
        )
        if payment is None:
            raise ResourceNotFoundError("BankTransferPayment", str(payment_id))

        await self._transition(payment, PaymentStatus.COMPLETED)
        await self.session.commit()

        logger.info("bank_transfer_confirmed", payment_id=str(payment_id))
        return payment

    async def _transition(self, payment: Payment, new_status: PaymentStatus) -> None:
        """
        Apply a status change. Flushes without committing.

        Repeating the current status is a no-op; leaving a terminal state
        raises InvalidPaymentTransitionError.
        """
        current = PaymentStatus(payment.status)
        if new_status == current or new_status == PaymentStatus.PENDING:
            return
        if current != PaymentStatus.PENDING:
            raise InvalidPaymentTransitionError(payment.id, current.value, new_status.value)

        payment.status = new_status.value
        if new_status == PaymentStatus.COMPLETED:
            await self._fulfill(payment)
        await self.session.flush()

        metrics.record_payment_status(payment.payment_method, new_status.value)
        logger.info(
            "payment_status_changed",
            payment_id=str(payment.id),
            from_status=current.value,
            to_status=new_status.value,
        )

    async def _fulfill(self, payment: Payment) -> None:
        """Deliver what a completed payment paid for."""
        if payment.payment_type == PaymentType.MEMBERSHIP.value:
            if payment.membership_tier is None:
                logger.error("membership_payment_without_tier", payment_id=str(payment.id))
                return
            tier = MembershipTier(payment.membership_tier)
            if payment.amount < first_payment_amount(tier):
                logger.error(
                    "membership_payment_below_price",
                    payment_id=str(payment.id),
                    amount=str(payment.amount),
                    membership_tier=tier.value,
                )
                return
            await MembershipService(self.session).activate_membership(payment.user_id, tier)
        else:
            logger.info(
                "payment_completed_no_fulfillment",
                payment_id=str(payment.id),
                payment_type=payment.payment_type,
            )

    # ========================================================================
    # Queries
    # ========================================================================

    async def list_payments(self, user_id: UUID) -> list[Payment]:
        """The user's payments, newest first."""
        stmt = (
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_payment(self, user_id: UUID, payment_id: UUID) -> Payment:
        """One of the user's payments."""
        payment = await self.session.get(Payment, payment_id)
        if payment is None or payment.user_id != user_id:
            raise ResourceNotFoundError("Payment", str(payment_id))
        return payment

    async def _find_by_idempotency_key(self, user_id: UUID, key: str) -> Payment | None:
        stmt = select(Payment).where(Payment.user_id == user_id, Payment.idempotency_key == key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_payment(self, *criteria: ColumnElement[bool]) -> Payment | None:
        stmt = select(Payment).where(*criteria).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()
