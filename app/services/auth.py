"""
Auth Service - sign-up, sign-in, sign-out and role lookup.

Passwords are hashed with argon2. Sessions are HS256 JWTs; signing out
revokes the token through the revocation store.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Profile, User
from app.exceptions import (
    AuthenticationError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    RegistrationValidationError,
)
from app.models.api import UserRole, UserType
from app.models.domain import AuthenticatedUser, IssuedToken
from app.services.token_revocation import token_revocation_service

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6

ADMIN_HOME = "/admin"
MEMBER_HOME = "/dashboard"


@dataclass(frozen=True)
class SignInResult:
    """Successful sign-in."""

    token: IssuedToken
    user: User
    role: UserRole
    redirect_to: str


def redirect_for_role(role: UserRole) -> str:
    """Landing page after sign-in."""
    return ADMIN_HOME if role == UserRole.ADMIN else MEMBER_HOME


def check_password_strength(password: str) -> None:
    """Reject passwords below the minimum length."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise RegistrationValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def default_profile_name(full_name: str | None, email: str) -> str:
    """Name used when a profile is created on demand."""
    if full_name and full_name.strip():
        return full_name.strip()
    local_part = email.split("@", 1)[0]
    return local_part or "User"


class AuthService:
    """Account and session operations."""

    def __init__(
        self,
        session: AsyncSession,
        jwt_secret: str | None = None,
        jwt_expire_hours: int | None = None,
    ):
        self.session = session
        self.jwt_secret = jwt_secret or settings.jwt_secret
        self.jwt_expire_hours = jwt_expire_hours or settings.jwt_expire_hours
        self.password_hasher = PasswordHasher()

    # ========================================================================
    # Sign-up
    # ========================================================================

    async def create_user(
        self,
        email: str,
        password: str,
        full_name: str | None = None,
        phone: str | None = None,
        user_type: UserType = UserType.MEMBER,
    ) -> User:
        """
        Insert a user row and flush, without committing.

        Callers that need more rows in the same transaction (registration)
        use this directly; sign_up wraps it with a commit.

        Raises:
            RegistrationValidationError: Password too short (before any query)
            EmailAlreadyRegisteredError: If the email is taken
        """
        check_password_strength(password)
        email = email.strip().lower()
        existing = await self.session.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise EmailAlreadyRegisteredError(email)

        user = User(
            email=email,
            password_hash=self.password_hasher.hash(password),
            full_name=full_name,
            phone=phone,
            role=UserRole.MEMBER.value,
            user_type=user_type.value,
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Concurrent sign-up with the same email
            await self.session.rollback()
            raise EmailAlreadyRegisteredError(email) from exc

        return user

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: str | None = None,
        phone: str | None = None,
        user_type: UserType = UserType.MEMBER,
    ) -> User:
        """Create an account. Nothing else is created."""
        user = await self.create_user(email, password, full_name, phone, user_type)
        await self.session.commit()

        logger.info("user_signed_up", user_id=str(user.id), user_type=user.user_type)
        return user

    # ========================================================================
    # Sign-in / Sign-out
    # ========================================================================

    async def sign_in(self, email: str, password: str) -> SignInResult:
        """
        Verify credentials and issue a session token.

        A failed attempt has no side effect. On success the user's profile
        is created if missing; failing to do so does not fail the login.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
        """
        email = email.strip().lower()
        result = await self.session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            logger.info("sign_in_failed", reason="unknown_email")
            raise InvalidCredentialsError()

        try:
            self.password_hasher.verify(user.password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            logger.info("sign_in_failed", reason="password_mismatch", user_id=str(user.id))
            raise InvalidCredentialsError()

        try:
            await self.ensure_profile(user)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            await self.session.refresh(user)
            logger.error("profile_upsert_failed", user_id=str(user.id), error=str(exc))

        role = UserRole(user.role)
        token = self.issue_token(user.id, user.email, role)

        logger.info("user_signed_in", user_id=str(user.id), role=role.value)
        return SignInResult(token=token, user=user, role=role, redirect_to=redirect_for_role(role))

    async def sign_out(self, identity: AuthenticatedUser) -> None:
        """Revoke the caller's token."""
        await token_revocation_service.revoke_token(
            token=identity.token,
            user_id=str(identity.user_id),
            reason="sign_out",
            token_exp=identity.token_expires_at,
            revoked_by=str(identity.user_id),
            db=self.session,
        )
        logger.info("user_signed_out", user_id=str(identity.user_id))

    async def ensure_profile(self, user: User) -> Profile:
        """Return the user's profile, creating it when missing."""
        profile = await self.session.get(Profile, user.id)
        if profile is not None:
            return profile

        profile = Profile(
            id=user.id,
            full_name=default_profile_name(user.full_name, user.email),
            phone=user.phone,
        )
        self.session.add(profile)
        try:
            await self.session.commit()
        except IntegrityError:
            # Another request created it first
            await self.session.rollback()
            await self.session.refresh(user)
            existing = await self.session.get(Profile, user.id)
            if existing is None:
                raise
            return existing

        logger.info("profile_created_on_sign_in", user_id=str(user.id))
        return profile

    # ========================================================================
    # Roles / Tokens
    # ========================================================================

    async def get_user_role(self, user_id: UUID) -> UserRole:
        """Role of a user. Unknown users are treated as members."""
        result = await self.session.execute(select(User.role).where(User.id == user_id))
        role = result.scalar_one_or_none()
        if role is None:
            logger.warning("role_lookup_user_missing", user_id=str(user_id))
            return UserRole.MEMBER
        return UserRole(role)

    def issue_token(self, user_id: UUID, email: str, role: UserRole) -> IssuedToken:
        """Sign a session JWT."""
        now = datetime.now(UTC)
        expires_at = now + timedelta(hours=self.jwt_expire_hours)
        payload = {
            "sub": str(user_id),
            "email": email,
            "role": role.value,
            "iat": now,
            "exp": expires_at,
        }
        return IssuedToken(
            access_token=jwt.encode(payload, self.jwt_secret, algorithm="HS256"),
            expires_at=expires_at,
        )

    def decode_token(self, token: str) -> AuthenticatedUser:
        """
        Verify a session JWT.

        Raises:
            AuthenticationError: Expired, malformed or badly signed token
        """
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            logger.warning("jwt_token_expired")
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.warning("jwt_token_invalid", error=str(e))
            raise AuthenticationError("Invalid token")

        try:
            return AuthenticatedUser(
                user_id=UUID(str(payload["sub"])),
                email=str(payload.get("email", "")),
                role=UserRole(payload.get("role", UserRole.MEMBER.value)),
                token=token,
                token_expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
            )
        except (KeyError, ValueError) as e:
            logger.warning("jwt_claims_invalid", error=str(e))
            raise AuthenticationError("Invalid token claims")
