"""
Agent Service - referral codes, attribution and commission bookkeeping.

Commission balances only change under a row lock. Withdrawal is bookkeeping:
pending moves to withdrawn and the agent's referrals are marked paid.
"""

import secrets
import string
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Agent, Profile, Referral
from app.exceptions import (
    AgentAlreadyExistsError,
    DataIntegrityError,
    NoPendingCommissionsError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from app.models.api import AgentType
from app.observability.metrics import metrics

logger = get_logger(__name__)

REFERRAL_CODE_PREFIX = "EG"
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
REFERRAL_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


@dataclass(frozen=True)
class ReferralView:
    """A referral with the referred member's display name."""

    referral: Referral
    referred_name: str | None


@dataclass(frozen=True)
class AgentTotals:
    """Commission totals across all agents."""

    agent_count: int
    total_commissions: Decimal
    commissions_pending: Decimal


def generate_referral_code() -> str:
    """EG followed by six random characters from A-Z0-9."""
    suffix = "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))
    return f"{REFERRAL_CODE_PREFIX}{suffix}"


def referral_link(referral_code: str, base_url: str | None = None) -> str:
    """Public sign-up link carrying the agent's code."""
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/register?ref={referral_code}"


def commission_per_referral() -> Decimal:
    """Commission credited for one referred registration."""
    return (settings.registration_fee * settings.referral_commission_rate).quantize(
        Decimal("0.01")
    )


class AgentService:
    """Agent and referral operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Member-facing
    # ========================================================================

    async def register_agent(
        self, user_id: UUID, agent_type: AgentType = AgentType.INDIVIDUAL
    ) -> Agent:
        """
        Make the user an agent with a fresh referral code.

        Raises:
            AgentAlreadyExistsError: If the user is already an agent
        """
        existing = await self._find_agent_by_user(user_id)
        if existing is not None:
            raise AgentAlreadyExistsError(existing.id)

        code = await self._unused_referral_code()
        agent = Agent(
            user_id=user_id,
            referral_code=code,
            agent_type=agent_type.value,
            total_commissions=Decimal("0"),
            commissions_withdrawn=Decimal("0"),
            commissions_pending=Decimal("0"),
            is_active=True,
        )
        self.session.add(agent)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raced = await self._find_agent_by_user(user_id)
            if raced is not None:
                raise AgentAlreadyExistsError(raced.id) from exc
            raise DataIntegrityError(f"Agent creation failed: {exc}") from exc

        logger.info(
            "agent_registered",
            agent_id=str(agent.id),
            user_id=str(user_id),
            referral_code=code,
        )
        return agent

    async def get_agent(self, user_id: UUID) -> Agent:
        """The caller's agent record."""
        agent = await self._find_agent_by_user(user_id)
        if agent is None:
            raise ResourceNotFoundError("Agent", str(user_id))
        return agent

    async def list_referrals(self, agent_id: UUID) -> list[ReferralView]:
        """Referrals of one agent, newest first."""
        stmt = (
            select(Referral, Profile.full_name)
            .outerjoin(Profile, Profile.id == Referral.referred_user_id)
            .where(Referral.agent_id == agent_id)
            .order_by(Referral.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [ReferralView(referral=row[0], referred_name=row[1]) for row in result.all()]

    async def withdraw_commissions(self, user_id: UUID) -> Agent:
        """
        Move all pending commissions to withdrawn.

        Raises:
            ResourceNotFoundError: If the user is not an agent
            NoPendingCommissionsError: If nothing is pending
        """
        stmt = select(Agent).where(Agent.user_id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        agent = result.scalar_one_or_none()
        if agent is None:
            raise ResourceNotFoundError("Agent", str(user_id))

        pending = agent.commissions_pending
        if pending <= 0:
            await self.session.rollback()
            raise NoPendingCommissionsError(agent.id)

        expected_withdrawn = agent.commissions_withdrawn + pending
        agent.commissions_withdrawn = expected_withdrawn
        agent.commissions_pending = Decimal("0")

        await self.session.execute(
            update(Referral)
            .where(Referral.agent_id == agent.id, Referral.commission_paid.is_(False))
            .values(commission_paid=True)
        )
        await self.session.flush()

        verified = await self.session.get(Agent, agent.id)
        if verified is None or verified.commissions_withdrawn != expected_withdrawn:
            raise WriteVerificationError(f"Agent {agent.id} withdrawal not persisted")

        await self.session.commit()
        metrics.commission_withdrawals_total.inc()

        logger.info(
            "commissions_withdrawn",
            agent_id=str(agent.id),
            amount=str(pending),
            total_withdrawn=str(expected_withdrawn),
        )
        return agent

    # ========================================================================
    # Registration hook
    # ========================================================================

    async def attribute_referral(
        self, referral_code: str, referred_user_id: UUID
    ) -> Referral | None:
        """
        Credit the agent behind a referral code. Flushes without committing.

        Unknown or inactive codes are ignored (logged, returns None).
        """
        code = referral_code.strip().upper()
        if not code:
            return None

        stmt = select(Agent).where(Agent.referral_code == code).with_for_update()
        result = await self.session.execute(stmt)
        agent = result.scalar_one_or_none()

        if agent is None or not agent.is_active:
            logger.warning(
                "referral_code_ignored",
                referral_code=code,
                reason="unknown" if agent is None else "inactive",
            )
            return None

        commission = commission_per_referral()
        referral = Referral(
            agent_id=agent.id,
            referred_user_id=referred_user_id,
            commission_amount=commission,
            commission_paid=False,
        )
        self.session.add(referral)
        agent.total_commissions = agent.total_commissions + commission
        agent.commissions_pending = agent.commissions_pending + commission
        await self.session.flush()

        metrics.referral_commissions_fcfa.inc(float(commission))
        logger.info(
            "referral_attributed",
            agent_id=str(agent.id),
            referred_user_id=str(referred_user_id),
            commission=str(commission),
        )
        return referral

    # ========================================================================
    # Admin
    # ========================================================================

    async def list_agents(self) -> list[Agent]:
        """All agents, newest first."""
        result = await self.session.execute(select(Agent).order_by(Agent.created_at.desc()))
        return list(result.scalars().all())

    async def list_all_referrals(self) -> list[ReferralView]:
        """Every referral, newest first."""
        stmt = (
            select(Referral, Profile.full_name)
            .outerjoin(Profile, Profile.id == Referral.referred_user_id)
            .order_by(Referral.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [ReferralView(referral=row[0], referred_name=row[1]) for row in result.all()]

    async def set_agent_active(self, agent_id: UUID, active: bool) -> Agent:
        """Activate or deactivate an agent."""
        agent = await self.session.get(Agent, agent_id)
        if agent is None:
            raise ResourceNotFoundError("Agent", str(agent_id))

        agent.is_active = active
        await self.session.commit()

        logger.info("agent_status_changed", agent_id=str(agent_id), is_active=active)
        return agent

    async def agent_totals(self) -> AgentTotals:
        """Commission totals across all agents."""
        stmt = select(
            func.count(Agent.id),
            func.coalesce(func.sum(Agent.total_commissions), 0),
            func.coalesce(func.sum(Agent.commissions_pending), 0),
        )
        result = await self.session.execute(stmt)
        count, total, pending = result.one()
        return AgentTotals(
            agent_count=int(count),
            total_commissions=Decimal(total),
            commissions_pending=Decimal(pending),
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _find_agent_by_user(self, user_id: UUID) -> Agent | None:
        result = await self.session.execute(select(Agent).where(Agent.user_id == user_id))
        return result.scalar_one_or_none()

    async def _unused_referral_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_referral_code()
            taken = await self.session.execute(
                select(Agent.id).where(Agent.referral_code == code)
            )
            if taken.scalar_one_or_none() is None:
                return code
            logger.info("referral_code_collision", referral_code=code)
        raise DataIntegrityError("Could not allocate a unique referral code")
