"""
Member routes - registration, profile, membership and card validation.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.auth_routes import user_response
from app.api.dependencies import get_current_user
from app.db.models import Membership, Profile
from app.db.session import get_db
from app.exceptions import (
    DataIntegrityError,
    EmailAlreadyRegisteredError,
    RegistrationValidationError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from app.models.api import (
    CardValidationResponse,
    MembershipResponse,
    MembershipTier,
    ProfileResponse,
    ProfileUpdateRequest,
    RegistrationRequest,
    RegistrationResponse,
    TierInfo,
)
from app.models.domain import AuthenticatedUser
from app.services.membership import MembershipService, RegistrationService, list_tier_pricing

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["members"])


def profile_response(profile: Profile) -> ProfileResponse:
    """Public view of a profile row."""
    return ProfileResponse(
        id=profile.id,
        full_name=profile.full_name,
        phone=profile.phone,
        address=profile.address,
        city=profile.city,
        country=profile.country,
        profile_image_url=profile.profile_image_url,
    )


def membership_response(membership: Membership) -> MembershipResponse:
    """Public view of a membership row."""
    return MembershipResponse(
        id=membership.id,
        member_id=membership.member_id,
        tier=MembershipTier(membership.tier),
        start_date=membership.start_date,
        expiry_date=membership.expiry_date,
        is_active=membership.is_active,
        physical_card_requested=membership.physical_card_requested,
    )


@router.post("/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegistrationRequest, db: AsyncSession = Depends(get_db)
) -> RegistrationResponse:
    """
    Register a member.

    Creates the user, profile and (for members) a membership in one
    transaction. A valid referral code credits the agent.
    """
    try:
        result = await RegistrationService(db).register(request)
    except RegistrationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except EmailAlreadyRegisteredError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        ) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        logger.error("registration_write_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration could not be completed",
        ) from exc

    return RegistrationResponse(
        user=user_response(result.user),
        profile=profile_response(result.profile),
        membership=membership_response(result.membership) if result.membership else None,
        referral_attributed=result.referral is not None,
    )


@router.get("/me/profile", response_model=ProfileResponse)
async def get_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """The caller's profile."""
    try:
        profile = await MembershipService(db).get_profile(user.user_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found") from exc
    return profile_response(profile)


@router.patch("/me/profile", response_model=ProfileResponse)
async def update_profile(
    request: ProfileUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Update the provided profile fields."""
    changes = request.model_dump(exclude_unset=True)
    try:
        profile = await MembershipService(db).update_profile(user.user_id, changes)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found") from exc
    return profile_response(profile)


@router.get("/me/membership", response_model=MembershipResponse)
async def get_membership(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    """The caller's active membership."""
    membership = await MembershipService(db).get_active_membership(user.user_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active membership",
        )
    return membership_response(membership)


@router.post("/me/membership/card-request", response_model=MembershipResponse)
async def request_card(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    """Ask for a printed member card."""
    try:
        membership = await MembershipService(db).request_physical_card(user.user_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active membership",
        ) from exc
    return membership_response(membership)


@router.get("/memberships/tiers", response_model=list[TierInfo])
async def list_tiers() -> list[TierInfo]:
    """Tier pricing, including the first payment (registration + one month)."""
    return [
        TierInfo(
            tier=pricing.tier,
            name=pricing.name,
            registration_fee=pricing.registration_fee,
            monthly_fee=pricing.monthly_fee,
            discount_percentage=pricing.discount_percentage,
            first_payment=pricing.first_payment,
        )
        for pricing in list_tier_pricing()
    ]


@router.get("/memberships/validate/{member_id}", response_model=CardValidationResponse)
async def validate_card(member_id: str, db: AsyncSession = Depends(get_db)) -> CardValidationResponse:
    """Check a member card. Unknown ids are reported as invalid, not 404."""
    check = await MembershipService(db).validate_member_card(member_id)
    return CardValidationResponse(
        valid=check.valid,
        member_id=check.member_id,
        name=check.name,
        membership_tier=check.tier,
        expiry_date=check.expiry,
        reason=check.reason,
    )
