"""
Membership Service - registration, profiles, memberships and member cards.

Registration writes the user, profile, membership and referral in a single
transaction. A user has at most one active membership; activating again
extends it.
"""

import calendar
import secrets
import string
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Membership, Profile, Referral, User
from app.exceptions import (
    DataIntegrityError,
    RegistrationValidationError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from app.models.api import MembershipTier, RegistrationRequest, UserType
from app.models.domain import CardValidation, TierPricing
from app.observability.metrics import metrics
from app.services.agents import AgentService
from app.services.auth import AuthService, check_password_strength

logger = get_logger(__name__)

MEMBERSHIP_TERM_MONTHS = 12
BASE36_ALPHABET = string.digits + string.ascii_lowercase
MAX_MEMBER_ID_ATTEMPTS = 10

# tier -> (display name, monthly fee FCFA, partner discount %)
_TIER_TABLE: dict[MembershipTier, tuple[str, Decimal, int]] = {
    MembershipTier.ESSENTIAL: ("Essential", Decimal("1000"), 5),
    MembershipTier.PREMIUM: ("Premium", Decimal("2000"), 10),
    MembershipTier.ELITE: ("Elite", Decimal("5000"), 20),
}


def get_tier_pricing(tier: MembershipTier) -> TierPricing:
    """Pricing for one tier."""
    name, monthly, discount = _TIER_TABLE[tier]
    return TierPricing(
        tier=tier,
        name=name,
        registration_fee=settings.registration_fee,
        monthly_fee=monthly,
        discount_percentage=discount,
    )


def list_tier_pricing() -> list[TierPricing]:
    """Pricing for every tier, cheapest first."""
    return [get_tier_pricing(tier) for tier in _TIER_TABLE]


def first_payment_amount(tier: MembershipTier) -> Decimal:
    """Registration fee plus the first monthly fee."""
    return get_tier_pricing(tier).first_payment


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def random_base36(length: int) -> str:
    """Random lowercase base-36 string."""
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def generate_placeholder_email(domain: str | None = None) -> str:
    """Email used when a member registers without one."""
    millis = int(time.time() * 1000)
    return f"user_{millis}_{random_base36(9)}@{domain or settings.generated_email_domain}"


def generate_member_id(now: datetime | None = None) -> str:
    """Card number: ML-<year><6 digits>."""
    year = (now or datetime.now(UTC)).year
    return f"ML-{year}{secrets.randbelow(1_000_000):06d}"


def validate_registration_form(form: RegistrationRequest) -> None:
    """
    Local form checks. Runs before any database call.

    Raises:
        RegistrationValidationError: With the message shown to the user
    """
    if form.password != form.confirm_password:
        raise RegistrationValidationError("Passwords do not match")
    check_password_strength(form.password)
    if not form.full_name.strip():
        raise RegistrationValidationError("Full name is required")


@dataclass(frozen=True)
class RegistrationResult:
    """Rows created by a registration."""

    user: User
    profile: Profile
    membership: Membership | None
    referral: Referral | None


class MembershipService:
    """Profile and membership operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Profiles
    # ========================================================================

    async def get_profile(self, user_id: UUID) -> Profile:
        """The user's profile."""
        profile = await self.session.get(Profile, user_id)
        if profile is None:
            raise ResourceNotFoundError("Profile", str(user_id))
        return profile

    async def update_profile(self, user_id: UUID, changes: dict[str, Any]) -> Profile:
        """Apply the provided fields to the profile."""
        profile = await self.get_profile(user_id)
        for field_name, value in changes.items():
            setattr(profile, field_name, value)
        await self.session.commit()

        logger.info("profile_updated", user_id=str(user_id), fields=sorted(changes))
        return profile

    # ========================================================================
    # Memberships
    # ========================================================================

    async def get_active_membership(self, user_id: UUID) -> Membership | None:
        """The active, unexpired membership, if any."""
        stmt = select(Membership).where(
            Membership.user_id == user_id,
            Membership.is_active.is_(True),
            Membership.expiry_date > datetime.now(UTC),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def activate_membership(
        self,
        user_id: UUID,
        tier: MembershipTier,
        months: int = MEMBERSHIP_TERM_MONTHS,
        physical_card_requested: bool = False,
    ) -> Membership:
        """
        Create or extend the user's membership. Flushes without committing.

        An existing active membership is extended from its current expiry
        (or from now when already lapsed) and moved to the given tier.
        """
        now = datetime.now(UTC)
        stmt = (
            select(Membership)
            .where(Membership.user_id == user_id, Membership.is_active.is_(True))
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        current = result.scalar_one_or_none()

        if current is not None:
            start_from = max(current.expiry_date, now)
            current.expiry_date = add_months(start_from, months)
            current.tier = tier.value
            current.physical_card_requested = (
                current.physical_card_requested or physical_card_requested
            )
            await self.session.flush()
            logger.info(
                "membership_extended",
                user_id=str(user_id),
                member_id=current.member_id,
                tier=tier.value,
                expiry_date=current.expiry_date.isoformat(),
            )
            return current

        membership = Membership(
            user_id=user_id,
            tier=tier.value,
            member_id=await self._unused_member_id(now),
            start_date=now,
            expiry_date=add_months(now, months),
            is_active=True,
            physical_card_requested=physical_card_requested,
        )
        self.session.add(membership)
        await self.session.flush()

        verified = await self.session.get(Membership, membership.id)
        if verified is None:
            raise WriteVerificationError(f"Membership {membership.id} not found after insert")

        logger.info(
            "membership_created",
            user_id=str(user_id),
            member_id=membership.member_id,
            tier=tier.value,
        )
        return membership

    async def request_physical_card(self, user_id: UUID) -> Membership:
        """Flag the active membership for a printed card."""
        membership = await self.get_active_membership(user_id)
        if membership is None:
            raise ResourceNotFoundError("Membership", str(user_id))

        membership.physical_card_requested = True
        await self.session.commit()

        logger.info("physical_card_requested", member_id=membership.member_id)
        return membership

    async def validate_member_card(self, member_id: str) -> CardValidation:
        """Check a scanned member card."""
        stmt = (
            select(Membership, Profile.full_name)
            .outerjoin(Profile, Profile.id == Membership.user_id)
            .where(Membership.member_id == member_id)
        )
        result = await self.session.execute(stmt)
        row = result.first()

        if row is None:
            logger.info("member_card_rejected", member_id=member_id, reason="not_found")
            return CardValidation(valid=False, member_id=member_id, reason="Membership not found")

        membership, full_name = row[0], row[1]
        tier = MembershipTier(membership.tier)
        expiry = membership.expiry_date.strftime("%m/%y")

        reason: str | None = None
        if not membership.is_active:
            reason = "Membership inactive"
        elif membership.expiry_date <= datetime.now(UTC):
            reason = "Membership expired"

        logger.info("member_card_checked", member_id=member_id, valid=reason is None)
        return CardValidation(
            valid=reason is None,
            member_id=member_id,
            name=full_name,
            tier=tier,
            expiry=expiry,
            reason=reason,
        )

    async def _unused_member_id(self, now: datetime) -> str:
        for _ in range(MAX_MEMBER_ID_ATTEMPTS):
            candidate = generate_member_id(now)
            taken = await self.session.execute(
                select(Membership.id).where(Membership.member_id == candidate)
            )
            if taken.scalar_one_or_none() is None:
                return candidate
        raise DataIntegrityError("Could not allocate a unique member id")


class RegistrationService:
    """Member self-registration."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.auth = AuthService(session)
        self.memberships = MembershipService(session)
        self.agents = AgentService(session)

    async def register(self, form: RegistrationRequest) -> RegistrationResult:
        """
        Register a member.

        Validation happens first and touches nothing. The user, profile,
        membership (members only) and referral are committed together;
        any failure rolls all of them back.

        Raises:
            RegistrationValidationError: Form rejected
            EmailAlreadyRegisteredError: Email taken
        """
        validate_registration_form(form)

        email = form.email.strip().lower() or generate_placeholder_email()
        full_name = form.full_name.strip()

        try:
            user = await self.auth.create_user(
                email=email,
                password=form.password,
                full_name=full_name,
                phone=form.phone or None,
                user_type=form.user_type,
            )

            profile = Profile(
                id=user.id,
                full_name=full_name,
                phone=form.phone or None,
                address=form.address or None,
                city=form.city or None,
                country=form.country or "Mali",
            )
            self.session.add(profile)
            await self.session.flush()

            membership: Membership | None = None
            if form.user_type == UserType.MEMBER:
                membership = await self.memberships.activate_membership(
                    user.id,
                    form.tier,
                    physical_card_requested=form.physical_card_requested,
                )

            referral: Referral | None = None
            if form.referral_code:
                referral = await self.agents.attribute_referral(form.referral_code, user.id)

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.warning("registration_rolled_back", email=email)
            raise

        metrics.record_registration(form.tier.value, referred=referral is not None)
        logger.info(
            "member_registered",
            user_id=str(user.id),
            tier=form.tier.value if membership else None,
            member_id=membership.member_id if membership else None,
            referred=referral is not None,
        )
        return RegistrationResult(
            user=user, profile=profile, membership=membership, referral=referral
        )
