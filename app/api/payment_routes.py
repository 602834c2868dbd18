"""
Payment routes - gateways, payment dispatch, status and provider webhooks.
"""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_current_user
from app.db.models import Payment
from app.db.session import get_db
from app.exceptions import (
    DuplicatePaymentError,
    InvalidPaymentTransitionError,
    PaymentProviderError,
    ResourceNotFoundError,
    UnsupportedGatewayError,
    WebhookVerificationError,
)
from app.models.api import (
    CreatePaymentRequest,
    GatewayResponse,
    PaymentRecordResponse,
    PaymentResponse,
    PaymentStatus,
    PaymentType,
    WebhookAckResponse,
)
from app.models.domain import AuthenticatedUser, GatewayConfig
from app.services.gateway_registry import calculate_fees, gateway_registry, round_money
from app.services.payments import PaymentService, build_provider

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/payments", tags=["payments"])


def gateway_response(gateway: GatewayConfig, amount: Decimal | None = None) -> GatewayResponse:
    """Public view of a gateway, with fees when an amount is given."""
    fees = round_money(calculate_fees(gateway, amount)) if amount is not None else None
    return GatewayResponse(
        id=gateway.id,
        name=gateway.name,
        type=gateway.type,
        is_active=gateway.is_active,
        fee_percentage=gateway.fee_percentage,
        fee_fixed=gateway.fee_fixed,
        supported_currencies=list(gateway.supported_currencies),
        description=gateway.description,
        icon=gateway.icon,
        fees=fees,
        total_amount=amount + fees if amount is not None and fees is not None else None,
    )


def payment_record(payment: Payment) -> PaymentRecordResponse:
    """Public view of a payment row."""
    return PaymentRecordResponse(
        id=payment.id,
        payment_type=PaymentType(payment.payment_type),
        payment_method=payment.payment_method,
        amount=payment.amount,
        fees=payment.fees,
        currency=payment.currency,
        status=PaymentStatus(payment.status),
        transaction_reference=payment.transaction_reference,
        provider_transaction_id=payment.provider_transaction_id,
        payment_url=payment.payment_url,
        created_at=payment.created_at,
    )


@router.get("/gateways", response_model=list[GatewayResponse])
async def list_gateways(
    amount: Decimal | None = Query(None, gt=0),
    db: AsyncSession = Depends(get_db),
) -> list[GatewayResponse]:
    """Active gateways. With ?amount= each entry carries its fee and total."""
    await gateway_registry.ensure_loaded(db)
    return [gateway_response(g, amount) for g in gateway_registry.get_active_gateways()]


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    request: CreatePaymentRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    """
    Start a payment.

    Gateway problems come back as success=false with an error message.
    Reusing an idempotency key returns the original payment.
    """
    try:
        return await PaymentService(db).process_payment(user.user_id, request)
    except DuplicatePaymentError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Idempotency key already used for payment {exc.existing_id}",
        ) from exc


@router.get("", response_model=list[PaymentRecordResponse])
async def list_payments(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentRecordResponse]:
    """The caller's payments, newest first."""
    payments = await PaymentService(db).list_payments(user.user_id)
    return [payment_record(p) for p in payments]


@router.get("/{payment_id}", response_model=PaymentRecordResponse)
async def get_payment(
    payment_id: UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentRecordResponse:
    """One of the caller's payments."""
    try:
        payment = await PaymentService(db).get_payment(user.user_id, payment_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found") from exc
    return payment_record(payment)


@router.post("/{payment_id}/refresh", response_model=PaymentRecordResponse)
async def refresh_payment(
    payment_id: UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentRecordResponse:
    """Poll the provider for a pending payment's status."""
    try:
        payment = await PaymentService(db).refresh_status(user.user_id, payment_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found") from exc
    except UnsupportedGatewayError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    except InvalidPaymentTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return payment_record(payment)


@router.post("/webhooks/{gateway_id}", response_model=WebhookAckResponse)
async def payment_webhook(
    gateway_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> WebhookAckResponse:
    """
    Provider notification endpoint.

    The signature header depends on the gateway. Unsigned or tampered
    notifications are rejected with 401 and change nothing.
    """
    provider = build_provider(gateway_id)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown payment gateway: {gateway_id}",
        )

    payload = await request.body()
    signature = request.headers.get(provider.signature_header, "")

    try:
        payment = await PaymentService(db).handle_webhook(gateway_id, payload, signature)
    except WebhookVerificationError as exc:
        logger.warning("webhook_rejected", gateway_id=gateway_id, error=exc.message)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    except UnsupportedGatewayError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found") from exc
    except InvalidPaymentTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return WebhookAckResponse(
        received=True, payment_id=payment.id, status=PaymentStatus(payment.status)
    )
