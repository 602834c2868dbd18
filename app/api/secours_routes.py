"""
Ô Secours routes - subscriptions, token purchases and rescue requests.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_current_user
from app.db.models import RescueRequest, SecoursSubscription, TokenTransaction
from app.db.session import get_db
from app.exceptions import (
    InsufficientTokensError,
    PaymentNotCreditableError,
    PolicyNotConfiguredError,
    ResourceNotFoundError,
    SubscriptionExistsError,
    TokenLimitError,
    WriteVerificationError,
)
from app.models.api import (
    PurchaseTokensRequest,
    RescueRequestCreate,
    RescueRequestResponse,
    RescueStatus,
    SecurityAlertResponse,
    SubscribeRequest,
    SubscriptionResponse,
    SubscriptionType,
    TokenInfoResponse,
    TokenLimits,
    TokenTransactionResponse,
)
from app.models.domain import AuthenticatedUser
from app.services.secours import SecoursService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/secours", tags=["secours"])


def subscription_response(subscription: SecoursSubscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        subscription_type=SubscriptionType(subscription.subscription_type),
        is_active=subscription.is_active,
        token_balance=subscription.token_balance,
        created_at=subscription.created_at,
    )


def transaction_response(transaction: TokenTransaction) -> TokenTransactionResponse:
    subscription = transaction.subscription
    return TokenTransactionResponse(
        id=transaction.id,
        subscription_id=transaction.subscription_id,
        subscription_type=(
            SubscriptionType(subscription.subscription_type) if subscription else None
        ),
        token_amount=transaction.token_amount,
        token_value_fcfa=transaction.token_value_fcfa,
        total_amount_fcfa=transaction.total_amount_fcfa,
        payment_method=transaction.payment_method,
        created_at=transaction.created_at,
    )


def rescue_response(rescue: RescueRequest) -> RescueRequestResponse:
    subscription = rescue.subscription
    return RescueRequestResponse(
        id=rescue.id,
        subscription_id=rescue.subscription_id,
        subscription_type=(
            SubscriptionType(subscription.subscription_type) if subscription else None
        ),
        request_description=rescue.request_description,
        rescue_value_fcfa=rescue.rescue_value_fcfa,
        tokens_reserved=rescue.tokens_reserved,
        status=RescueStatus(rescue.status),
        created_at=rescue.created_at,
    )


def _policy_unavailable(exc: PolicyNotConfiguredError) -> HTTPException:
    logger.error("secours_policy_missing", subscription_type=exc.subscription_type)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Token policy not configured for {exc.subscription_type}",
    )


@router.post(
    "/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED
)
async def subscribe(
    request: SubscribeRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    """Open a subscription with a zero balance."""
    try:
        subscription = await SecoursService(db).subscribe(user.user_id, request.subscription_type)
    except SubscriptionExistsError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Already subscribed to {exc.subscription_type}",
        ) from exc
    return subscription_response(subscription)


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[SubscriptionResponse]:
    """Active subscriptions, newest first."""
    subscriptions = await SecoursService(db).list_subscriptions(user.user_id)
    return [subscription_response(s) for s in subscriptions]


@router.post(
    "/tokens/purchase",
    response_model=TokenTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def purchase_tokens(
    request: PurchaseTokensRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TokenTransactionResponse:
    """Credit tokens bought with a completed secours_tokens payment."""
    try:
        transaction = await SecoursService(db).purchase_tokens(
            user.user_id,
            request.subscription_id,
            request.token_amount,
            request.payment_id,
        )
    except ResourceNotFoundError as exc:
        resource = "Payment" if exc.resource_type == "Payment" else "Subscription"
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        ) from exc
    except PaymentNotCreditableError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except TokenLimitError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PolicyNotConfiguredError as exc:
        raise _policy_unavailable(exc) from exc
    except WriteVerificationError as exc:
        logger.error("token_purchase_verification_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Token purchase could not be verified",
        ) from exc
    return transaction_response(transaction)


@router.get("/tokens/transactions", response_model=list[TokenTransactionResponse])
async def list_token_transactions(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[TokenTransactionResponse]:
    """Token purchases, newest first."""
    transactions = await SecoursService(db).list_token_transactions(user.user_id)
    return [transaction_response(t) for t in transactions]


@router.post(
    "/rescue-requests",
    response_model=RescueRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_rescue(
    request: RescueRequestCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RescueRequestResponse:
    """Claim a rescue against the token balance."""
    try:
        rescue = await SecoursService(db).request_rescue(
            user.user_id,
            request.subscription_id,
            request.request_description,
            request.rescue_value_fcfa,
        )
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        ) from exc
    except InsufficientTokensError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "error": "Insufficient tokens",
                "balance": exc.balance,
                "required": exc.required,
            },
        ) from exc
    except PolicyNotConfiguredError as exc:
        raise _policy_unavailable(exc) from exc
    except WriteVerificationError as exc:
        logger.error("rescue_request_verification_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Rescue request could not be verified",
        ) from exc
    return rescue_response(rescue)


@router.get("/rescue-requests", response_model=list[RescueRequestResponse])
async def list_rescue_requests(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[RescueRequestResponse]:
    """Rescue requests, newest first."""
    requests = await SecoursService(db).list_rescue_requests(user.user_id)
    return [rescue_response(r) for r in requests]


@router.get("/token-info/{subscription_type}", response_model=TokenInfoResponse)
async def token_info(
    subscription_type: SubscriptionType,
    db: AsyncSession = Depends(get_db),
) -> TokenInfoResponse:
    """Token value and purchase limits for a subscription type."""
    try:
        policy = await SecoursService(db).get_token_info(subscription_type)
    except PolicyNotConfiguredError as exc:
        raise _policy_unavailable(exc) from exc
    return TokenInfoResponse(
        subscription_type=subscription_type,
        token_value=policy.token_value_fcfa,
        limits=TokenLimits(min_tokens=policy.min_tokens, max_tokens=policy.max_tokens),
    )


@router.get("/security-alerts", response_model=list[SecurityAlertResponse])
async def security_alerts(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[SecurityAlertResponse]:
    """Alerts from the activity monitor over recent history."""
    alerts = await SecoursService(db).security_alerts(user.user_id)
    return [
        SecurityAlertResponse(
            id=a.id, type=a.type, title=a.title, message=a.message, severity=a.severity
        )
        for a in alerts
    ]
