"""
Agent routes - agent registration, referrals and commission withdrawal.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user
from app.db.models import Agent
from app.db.session import get_db
from app.exceptions import (
    AgentAlreadyExistsError,
    DataIntegrityError,
    NoPendingCommissionsError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from app.models.api import AgentResponse, AgentType, ReferralResponse, RegisterAgentRequest
from app.models.domain import AuthenticatedUser
from app.services.agents import AgentService, ReferralView, referral_link

router = APIRouter(prefix="/v1/agents", tags=["agents"])


def agent_response(agent: Agent) -> AgentResponse:
    """Public view of an agent, with the shareable sign-up link."""
    return AgentResponse(
        id=agent.id,
        user_id=agent.user_id,
        referral_code=agent.referral_code,
        referral_link=referral_link(agent.referral_code),
        agent_type=AgentType(agent.agent_type),
        total_commissions=agent.total_commissions,
        commissions_withdrawn=agent.commissions_withdrawn,
        commissions_pending=agent.commissions_pending,
        is_active=agent.is_active,
        created_at=agent.created_at,
    )


def referral_response(view: ReferralView) -> ReferralResponse:
    referral = view.referral
    return ReferralResponse(
        id=referral.id,
        agent_id=referral.agent_id,
        referred_user_id=referral.referred_user_id,
        referred_name=view.referred_name,
        commission_amount=referral.commission_amount,
        commission_paid=referral.commission_paid,
        created_at=referral.created_at,
    )


def _not_an_agent(exc: ResourceNotFoundError) -> HTTPException:
    """404 for callers without an agent record."""
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not registered as an agent")


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def register_agent(
    request: RegisterAgentRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    """Become an agent. The referral code is generated server-side."""
    try:
        agent = await AgentService(db).register_agent(user.user_id, request.agent_type)
    except AgentAlreadyExistsError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Already registered as an agent",
        ) from exc
    except DataIntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=exc.message,
        ) from exc
    return agent_response(agent)


@router.get("/me", response_model=AgentResponse)
async def get_agent(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    """The caller's agent record."""
    try:
        agent = await AgentService(db).get_agent(user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_an_agent(exc) from exc
    return agent_response(agent)


@router.get("/me/referrals", response_model=list[ReferralResponse])
async def list_referrals(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ReferralResponse]:
    """The caller's referrals, newest first."""
    service = AgentService(db)
    try:
        agent = await service.get_agent(user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_an_agent(exc) from exc
    return [referral_response(v) for v in await service.list_referrals(agent.id)]


@router.post("/me/withdraw", response_model=AgentResponse)
async def withdraw(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    """Move pending commissions to withdrawn. No payout is sent."""
    try:
        agent = await AgentService(db).withdraw_commissions(user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_an_agent(exc) from exc
    except NoPendingCommissionsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No pending commissions",
        ) from exc
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=exc.message,
        ) from exc
    return agent_response(agent)
