"""
Auth routes - sign-up, sign-in, sign-out and role lookup.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user
from app.db.models import User
from app.db.session import get_db
from app.exceptions import (
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    RegistrationValidationError,
)
from app.models.api import (
    RoleResponse,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    UserResponse,
    UserRole,
    UserType,
)
from app.models.domain import AuthenticatedUser
from app.services.auth import AuthService

router = APIRouter(prefix="/v1/auth", tags=["auth"])


def user_response(user: User) -> UserResponse:
    """Public view of a user row."""
    return UserResponse(
        id=user.id,
        email=user.email,
        phone=user.phone,
        full_name=user.full_name,
        role=UserRole(user.role),
        user_type=UserType(user.user_type),
    )


@router.post("/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(request: SignUpRequest, db: AsyncSession = Depends(get_db)) -> UserResponse:
    """Create an account (no profile or membership)."""
    try:
        user = await AuthService(db).sign_up(
            email=request.email,
            password=request.password,
            full_name=request.full_name,
            phone=request.phone,
            user_type=request.user_type,
        )
    except RegistrationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except EmailAlreadyRegisteredError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        ) from exc
    return user_response(user)


@router.post("/signin", response_model=SignInResponse)
async def sign_in(request: SignInRequest, db: AsyncSession = Depends(get_db)) -> SignInResponse:
    """
    Exchange credentials for a session token.

    redirect_to is /admin for administrators and /dashboard otherwise.
    """
    try:
        result = await AuthService(db).sign_in(request.email, request.password)
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid login credentials",
        ) from exc

    return SignInResponse(
        access_token=result.token.access_token,
        expires_at=result.token.expires_at,
        user=user_response(result.user),
        redirect_to=result.redirect_to,
    )


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Revoke the current token."""
    await AuthService(db).sign_out(user)


@router.get("/me", response_model=UserResponse)
async def me(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """The signed-in user."""
    row = await db.get(User, user.user_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user_response(row)


@router.get("/role", response_model=RoleResponse)
async def role(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RoleResponse:
    """The signed-in user's role."""
    return RoleResponse(role=await AuthService(db).get_user_role(user.user_id))
