"""
FastAPI Dependencies - Authentication and authorization.

All dependencies return typed objects.
"""

from dataclasses import replace

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import User
from app.db.session import get_db
from app.exceptions import AuthenticationError
from app.models.api import UserRole
from app.models.domain import AuthenticatedUser
from app.services.auth import AuthService
from app.services.token_revocation import token_revocation_service

logger = get_logger(__name__)

# Bearer token scheme for session JWTs
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """
    Resolve the caller from Authorization: Bearer <session jwt>.

    Rejects missing, invalid, expired and revoked tokens, and tokens whose
    user no longer exists. The role is re-read from the database.

    Usage:
        @router.get("/v1/me/profile")
        async def get_profile(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    if credentials is None:
        raise _unauthorized("Authorization header required")

    token = credentials.credentials

    if await token_revocation_service.is_revoked(token, db):
        raise _unauthorized("Token has been revoked")

    try:
        identity = AuthService(db).decode_token(token)
    except AuthenticationError as exc:
        raise _unauthorized(exc.message) from exc

    user = await db.get(User, identity.user_id)
    if user is None:
        logger.warning("token_user_missing", user_id=str(identity.user_id))
        raise _unauthorized("User no longer exists")

    return replace(identity, role=UserRole(user.role), email=user.email)


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Require the admin role (403 otherwise)."""
    if not user.is_admin:
        logger.warning("admin_access_denied", user_id=str(user.user_id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user
