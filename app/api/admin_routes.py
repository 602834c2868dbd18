"""
Admin API routes for operating the platform.

Every route requires a session token whose user holds the admin role.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.agent_routes import agent_response, referral_response
from app.api.dependencies import require_admin
from app.api.discount_routes import merchant_response, sector_response
from app.api.payment_routes import gateway_response, payment_record
from app.db.session import get_db
from app.exceptions import (
    DataIntegrityError,
    InvalidPaymentTransitionError,
    ResourceNotFoundError,
)
from app.models.api import (
    AgentResponse,
    AgentStatusUpdateRequest,
    AgentTotalsResponse,
    GatewayResponse,
    GatewayUpdateRequest,
    MerchantRequest,
    MerchantResponse,
    MerchantUpdateRequest,
    PaymentRecordResponse,
    ReferralResponse,
    SectorRequest,
    SectorResponse,
    SectorUpdateRequest,
    SubscriptionType,
    TokenInfoResponse,
    TokenLimits,
    TokenPolicyRequest,
)
from app.models.domain import AuthenticatedUser, TokenPolicy
from app.services.agents import AgentService
from app.services.discounts import DiscountService
from app.services.gateway_registry import gateway_registry
from app.services.payments import PaymentService
from app.services.secours_policy import DatabaseSecoursPolicy

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"])


def _not_found(exc: ResourceNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{exc.resource_type} not found: {exc.resource_id}",
    )


def _conflict(exc: DataIntegrityError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)


# ============================================================================
# Payment Gateways
# ============================================================================


@router.get("/payments/gateways", response_model=list[GatewayResponse])
async def list_all_gateways(
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> list[GatewayResponse]:
    """All gateways, including inactive ones."""
    await gateway_registry.refresh(db)
    return [gateway_response(g) for g in gateway_registry.get_all_gateways()]


@router.patch("/payments/gateways/{gateway_id}", response_model=GatewayResponse)
async def update_gateway(
    gateway_id: str,
    request: GatewayUpdateRequest,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> GatewayResponse:
    """Enable/disable a gateway or change its fees."""
    await gateway_registry.ensure_loaded(db)
    changes = request.model_dump(exclude_unset=True)
    try:
        gateway = await gateway_registry.update_gateway(gateway_id, changes, session=db)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info(
        "admin_update_gateway",
        admin_email=admin.email,
        gateway_id=gateway_id,
        fields=sorted(changes),
    )
    return gateway_response(gateway)


@router.post("/payments/{payment_id}/confirm", response_model=PaymentRecordResponse)
async def confirm_bank_transfer(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> PaymentRecordResponse:
    """Mark a bank transfer as received."""
    try:
        payment = await PaymentService(db).confirm_bank_transfer(payment_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except InvalidPaymentTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    logger.info("admin_confirm_bank_transfer", admin_email=admin.email, payment_id=str(payment_id))
    return payment_record(payment)


# ============================================================================
# Agents
# ============================================================================


@router.get("/agents", response_model=list[AgentResponse])
async def list_agents(
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> list[AgentResponse]:
    """All agents, newest first."""
    return [agent_response(a) for a in await AgentService(db).list_agents()]


@router.get("/agents/totals", response_model=AgentTotalsResponse)
async def agent_totals(
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> AgentTotalsResponse:
    """Commission totals across all agents."""
    totals = await AgentService(db).agent_totals()
    return AgentTotalsResponse(
        agent_count=totals.agent_count,
        total_commissions=totals.total_commissions,
        commissions_pending=totals.commissions_pending,
    )


@router.patch("/agents/{agent_id}", response_model=AgentResponse)
async def set_agent_status(
    agent_id: UUID,
    request: AgentStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> AgentResponse:
    """Activate or deactivate an agent. Inactive agents earn no commissions."""
    try:
        agent = await AgentService(db).set_agent_active(agent_id, request.is_active)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc

    logger.info(
        "admin_set_agent_status",
        admin_email=admin.email,
        agent_id=str(agent_id),
        is_active=request.is_active,
    )
    return agent_response(agent)


@router.get("/referrals", response_model=list[ReferralResponse])
async def list_referrals(
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> list[ReferralResponse]:
    """Every referral, newest first."""
    return [referral_response(v) for v in await AgentService(db).list_all_referrals()]


# ============================================================================
# Discount Directory
# ============================================================================


@router.get("/discounts/sectors", response_model=list[SectorResponse])
async def list_sectors(
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> list[SectorResponse]:
    """All sectors, including inactive ones."""
    return [sector_response(s) for s in await DiscountService(db).list_sectors()]


@router.post(
    "/discounts/sectors", response_model=SectorResponse, status_code=status.HTTP_201_CREATED
)
async def create_sector(
    request: SectorRequest,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> SectorResponse:
    try:
        sector = await DiscountService(db).create_sector(
            request.name, request.description, request.is_active
        )
    except DataIntegrityError as exc:
        raise _conflict(exc) from exc
    return sector_response(sector)


@router.patch("/discounts/sectors/{sector_id}", response_model=SectorResponse)
async def update_sector(
    sector_id: UUID,
    request: SectorUpdateRequest,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> SectorResponse:
    try:
        sector = await DiscountService(db).update_sector(
            sector_id, request.model_dump(exclude_unset=True)
        )
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except DataIntegrityError as exc:
        raise _conflict(exc) from exc
    return sector_response(sector)


@router.delete("/discounts/sectors/{sector_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sector(
    sector_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> None:
    """Delete a sector that no merchant references."""
    try:
        await DiscountService(db).delete_sector(sector_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except DataIntegrityError as exc:
        raise _conflict(exc) from exc


@router.get("/discounts/merchants", response_model=list[MerchantResponse])
async def list_merchants(
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> list[MerchantResponse]:
    """All merchants, including inactive ones."""
    return [merchant_response(m) for m in await DiscountService(db).list_merchants()]


@router.post(
    "/discounts/merchants", response_model=MerchantResponse, status_code=status.HTTP_201_CREATED
)
async def create_merchant(
    request: MerchantRequest,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> MerchantResponse:
    try:
        merchant = await DiscountService(db).create_merchant(request.model_dump())
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except DataIntegrityError as exc:
        raise _conflict(exc) from exc
    return merchant_response(merchant)


@router.patch("/discounts/merchants/{merchant_id}", response_model=MerchantResponse)
async def update_merchant(
    merchant_id: UUID,
    request: MerchantUpdateRequest,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> MerchantResponse:
    try:
        merchant = await DiscountService(db).update_merchant(
            merchant_id, request.model_dump(exclude_unset=True)
        )
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except DataIntegrityError as exc:
        raise _conflict(exc) from exc
    return merchant_response(merchant)


@router.delete("/discounts/merchants/{merchant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_merchant(
    merchant_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> None:
    try:
        await DiscountService(db).delete_merchant(merchant_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc


# ============================================================================
# Ô Secours Policies
# ============================================================================


@router.put("/secours/policies/{subscription_type}", response_model=TokenInfoResponse)
async def set_token_policy(
    subscription_type: SubscriptionType,
    request: TokenPolicyRequest,
    db: AsyncSession = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> TokenInfoResponse:
    """Set the token value and purchase limits for a subscription type."""
    try:
        policy = TokenPolicy(
            subscription_type=subscription_type.value,
            token_value_fcfa=request.token_value_fcfa,
            min_tokens=request.min_tokens,
            max_tokens=request.max_tokens,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    saved = await DatabaseSecoursPolicy(db).set_policy(policy)

    logger.info(
        "admin_set_token_policy",
        admin_email=admin.email,
        subscription_type=subscription_type.value,
        token_value_fcfa=str(saved.token_value_fcfa),
    )
    return TokenInfoResponse(
        subscription_type=subscription_type,
        token_value=saved.token_value_fcfa,
        limits=TokenLimits(min_tokens=saved.min_tokens, max_tokens=saved.max_tokens),
    )
