"""
Ô Secours Service - subscriptions, token purchases and rescue requests.

Balance changes lock the subscription row (SELECT ... FOR UPDATE) and are
verified before commit. A rescue request is a claim against the balance:
it needs ceil(value / token_value) tokens and deducts them up front.
Tokens are bought with a completed secours_tokens payment, credited once.
"""

from decimal import ROUND_CEILING, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Payment, RescueRequest, SecoursSubscription, TokenTransaction
from app.exceptions import (
    DataIntegrityError,
    InsufficientTokensError,
    PaymentNotCreditableError,
    ResourceNotFoundError,
    SubscriptionExistsError,
    TokenLimitError,
    WriteVerificationError,
)
from app.models.api import PaymentStatus, PaymentType, RescueStatus, SubscriptionType
from app.models.domain import PurchaseActivity, RescueActivity, SecurityAlert, TokenPolicy
from app.observability.metrics import metrics
from app.services.gateway_registry import FCFA_CURRENCIES
from app.services.secours_policy import DatabaseSecoursPolicy, SecoursPolicy
from app.services.security_monitor import RECENT_WINDOW, analyze_activity

logger = get_logger(__name__)


def tokens_required(rescue_value: Decimal, token_value: Decimal) -> int:
    """Tokens needed to cover a rescue of the given FCFA value."""
    return int((rescue_value / token_value).to_integral_value(rounding=ROUND_CEILING))


def credit_refusal(payment: Payment, total_fcfa: Decimal) -> str | None:
    """Why a payment can't fund a purchase of total_fcfa, or None."""
    if payment.status != PaymentStatus.COMPLETED.value:
        return f"payment is {payment.status}, not completed"
    if payment.payment_type != PaymentType.SECOURS_TOKENS.value:
        return f"payment is for {payment.payment_type}, not secours_tokens"
    if payment.currency not in FCFA_CURRENCIES:
        return f"payment currency {payment.currency} is not FCFA"
    if payment.amount < total_fcfa:
        return f"payment amount {payment.amount} does not cover {total_fcfa}"
    return None


class SecoursService:
    """Ô Secours operations for one member."""

    def __init__(self, session: AsyncSession, policy: SecoursPolicy | None = None) -> None:
        self.session = session
        self.policy: SecoursPolicy = policy or DatabaseSecoursPolicy(session)

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def subscribe(
        self, user_id: UUID, subscription_type: SubscriptionType
    ) -> SecoursSubscription:
        """
        Open an active subscription with a zero balance.

        Raises:
            SubscriptionExistsError: An active subscription of this type exists
        """
        existing = await self._find_active(user_id, subscription_type)
        if existing is not None:
            raise SubscriptionExistsError(subscription_type.value, existing.id)

        subscription = SecoursSubscription(
            user_id=user_id,
            subscription_type=subscription_type.value,
            is_active=True,
            token_balance=0,
        )
        self.session.add(subscription)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raced = await self._find_active(user_id, subscription_type)
            if raced is not None:
                raise SubscriptionExistsError(subscription_type.value, raced.id) from exc
            raise DataIntegrityError(f"Subscription creation failed: {exc}") from exc

        logger.info(
            "secours_subscribed",
            user_id=str(user_id),
            subscription_id=str(subscription.id),
            subscription_type=subscription_type.value,
        )
        return subscription

    async def list_subscriptions(self, user_id: UUID) -> list[SecoursSubscription]:
        """Active subscriptions, newest first."""
        stmt = (
            select(SecoursSubscription)
            .where(SecoursSubscription.user_id == user_id, SecoursSubscription.is_active.is_(True))
            .order_by(SecoursSubscription.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ========================================================================
    # Tokens
    # ========================================================================

    async def get_token_info(self, subscription_type: SubscriptionType) -> TokenPolicy:
        """Token value and purchase bounds for a type."""
        token_value = await self.policy.get_token_value(subscription_type)
        min_tokens, max_tokens = await self.policy.get_min_max_tokens(subscription_type)
        return TokenPolicy(
            subscription_type=subscription_type.value,
            token_value_fcfa=token_value,
            min_tokens=min_tokens,
            max_tokens=max_tokens,
        )

    async def purchase_tokens(
        self,
        user_id: UUID,
        subscription_id: UUID,
        token_amount: int,
        payment_id: UUID,
    ) -> TokenTransaction:
        """
        Add tokens to a subscription, paid for by a completed payment.

        The payment must be the user's, of type secours_tokens, in FCFA and
        at least token_value * token_amount. Each payment credits once.

        Raises:
            ResourceNotFoundError: Not the user's active subscription or payment
            TokenLimitError: Amount outside the policy bounds
            PaymentNotCreditableError: The payment can't fund this purchase
        """
        subscription = await self._lock_subscription(user_id, subscription_id)
        subscription_type = SubscriptionType(subscription.subscription_type)

        info = await self.get_token_info(subscription_type)
        if not info.min_tokens <= token_amount <= info.max_tokens:
            await self.session.rollback()
            raise TokenLimitError(token_amount, info.min_tokens, info.max_tokens)

        total_fcfa = info.token_value_fcfa * token_amount
        payment = await self._lock_payment(user_id, payment_id)
        refusal = credit_refusal(payment, total_fcfa)
        if refusal is None and await self._payment_credited(payment_id):
            refusal = "payment already credited"
        if refusal is not None:
            await self.session.rollback()
            logger.warning(
                "token_purchase_refused",
                subscription_id=str(subscription_id),
                payment_id=str(payment_id),
                reason=refusal,
            )
            raise PaymentNotCreditableError(payment_id, refusal)

        transaction = TokenTransaction(
            subscription=subscription,
            token_amount=token_amount,
            token_value_fcfa=info.token_value_fcfa,
            total_amount_fcfa=total_fcfa,
            payment_method=payment.payment_method,
            payment_id=payment.id,
        )
        self.session.add(transaction)

        expected_balance = subscription.token_balance + token_amount
        subscription.token_balance = expected_balance
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise PaymentNotCreditableError(payment_id, "payment already credited") from exc

        verified_tx = await self.session.get(TokenTransaction, transaction.id)
        if verified_tx is None:
            raise WriteVerificationError(f"Token transaction {transaction.id} not found after insert")
        verified_sub = await self.session.get(SecoursSubscription, subscription.id)
        if verified_sub is None or verified_sub.token_balance != expected_balance:
            raise WriteVerificationError(f"Subscription {subscription.id} balance not persisted")

        await self.session.commit()
        metrics.tokens_purchased_total.labels(subscription_type=subscription_type.value).inc(
            token_amount
        )

        logger.info(
            "tokens_purchased",
            subscription_id=str(subscription.id),
            token_amount=token_amount,
            total_amount_fcfa=str(transaction.total_amount_fcfa),
            payment_id=str(payment.id),
            balance_after=expected_balance,
        )
        return transaction

    async def list_token_transactions(self, user_id: UUID) -> list[TokenTransaction]:
        """Purchases across the user's subscriptions, newest first."""
        stmt = (
            select(TokenTransaction)
            .join(SecoursSubscription, SecoursSubscription.id == TokenTransaction.subscription_id)
            .where(SecoursSubscription.user_id == user_id)
            .order_by(TokenTransaction.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    # ========================================================================
    # Rescue requests
    # ========================================================================

    async def request_rescue(
        self,
        user_id: UUID,
        subscription_id: UUID,
        request_description: str,
        rescue_value_fcfa: Decimal,
    ) -> RescueRequest:
        """
        Claim a rescue against the token balance.

        Raises:
            ResourceNotFoundError: Not the user's active subscription
            InsufficientTokensError: Balance below the tokens required
        """
        subscription = await self._lock_subscription(user_id, subscription_id)
        subscription_type = SubscriptionType(subscription.subscription_type)

        token_value = await self.policy.get_token_value(subscription_type)
        required = tokens_required(rescue_value_fcfa, token_value)
        if subscription.token_balance < required:
            balance = subscription.token_balance
            await self.session.rollback()
            metrics.rescue_requests_total.labels(
                subscription_type=subscription_type.value, accepted="False"
            ).inc()
            logger.info(
                "rescue_request_rejected",
                subscription_id=str(subscription_id),
                balance=balance,
                required=required,
            )
            raise InsufficientTokensError(balance, required)

        rescue = RescueRequest(
            subscription=subscription,
            request_description=request_description,
            rescue_value_fcfa=rescue_value_fcfa,
            tokens_reserved=required,
            status=RescueStatus.PENDING.value,
        )
        self.session.add(rescue)

        expected_balance = subscription.token_balance - required
        subscription.token_balance = expected_balance
        await self.session.flush()

        verified = await self.session.get(SecoursSubscription, subscription.id)
        if verified is None or verified.token_balance != expected_balance:
            raise WriteVerificationError(f"Subscription {subscription.id} balance not persisted")

        await self.session.commit()
        metrics.rescue_requests_total.labels(
            subscription_type=subscription_type.value, accepted="True"
        ).inc()

        logger.info(
            "rescue_requested",
            rescue_request_id=str(rescue.id),
            subscription_id=str(subscription.id),
            rescue_value_fcfa=str(rescue_value_fcfa),
            tokens_reserved=required,
            balance_after=expected_balance,
        )
        return rescue

    async def list_rescue_requests(self, user_id: UUID) -> list[RescueRequest]:
        """Rescue requests across the user's subscriptions, newest first."""
        stmt = (
            select(RescueRequest)
            .join(SecoursSubscription, SecoursSubscription.id == RescueRequest.subscription_id)
            .where(SecoursSubscription.user_id == user_id)
            .order_by(RescueRequest.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    # ========================================================================
    # Monitoring
    # ========================================================================

    async def security_alerts(self, user_id: UUID) -> list[SecurityAlert]:
        """Run the activity monitor over the user's recent history."""
        transactions = (await self.list_token_transactions(user_id))[:RECENT_WINDOW]
        requests = (await self.list_rescue_requests(user_id))[:RECENT_WINDOW]
        return analyze_activity(
            [PurchaseActivity(t.token_amount, t.created_at) for t in transactions],
            [RescueActivity(r.created_at) for r in requests],
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _find_active(
        self, user_id: UUID, subscription_type: SubscriptionType
    ) -> SecoursSubscription | None:
        stmt = select(SecoursSubscription).where(
            SecoursSubscription.user_id == user_id,
            SecoursSubscription.subscription_type == subscription_type.value,
            SecoursSubscription.is_active.is_(True),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_subscription(self, user_id: UUID, subscription_id: UUID) -> SecoursSubscription:
        stmt = (
            select(SecoursSubscription)
            .where(
                SecoursSubscription.id == subscription_id,
                SecoursSubscription.user_id == user_id,
                SecoursSubscription.is_active.is_(True),
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise ResourceNotFoundError("SecoursSubscription", str(subscription_id))
        return subscription

    async def _lock_payment(self, user_id: UUID, payment_id: UUID) -> Payment:
        stmt = (
            select(Payment)
            .where(Payment.id == payment_id, Payment.user_id == user_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        payment = result.scalar_one_or_none()
        if payment is None:
            raise ResourceNotFoundError("Payment", str(payment_id))
        return payment

    async def _payment_credited(self, payment_id: UUID) -> bool:
        stmt = select(TokenTransaction.id).where(TokenTransaction.payment_id == payment_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None
