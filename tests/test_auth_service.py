"""
Tests for AuthService.

Sign-up, sign-in side effects, profile bootstrap and session tokens.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import jwt
import pytest
from argon2 import PasswordHasher
from sqlalchemy.exc import IntegrityError, OperationalError

from app.db.models import Profile, User
from app.exceptions import (
    AuthenticationError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    RegistrationValidationError,
)
from app.models.api import UserRole
from app.services.auth import AuthService, default_profile_name, redirect_for_role
from app.services.token_revocation import TokenRevocationService
from tests.conftest import create_user, make_identity, make_result

SECRET = "test-secret-key-for-jwt-signing-min-32-chars"


@pytest.fixture
def hashed_user() -> User:
    """User whose password is 'secret123'."""
    return create_user(password_hash=PasswordHasher().hash("secret123"))


class TestHelpers:
    """Tests for module helpers."""

    def test_admin_redirect(self):
        assert redirect_for_role(UserRole.ADMIN) == "/admin"

    def test_member_redirect(self):
        assert redirect_for_role(UserRole.MEMBER) == "/dashboard"

    def test_profile_name_prefers_full_name(self):
        assert default_profile_name("  Awa Traoré ", "awa@example.com") == "Awa Traoré"

    def test_profile_name_falls_back_to_email_local_part(self):
        assert default_profile_name(None, "awa@example.com") == "awa"

    def test_profile_name_last_resort(self):
        assert default_profile_name("", "@example.com") == "User"


class TestSignUp:
    """Tests for sign_up."""

    @pytest.mark.asyncio
    async def test_creates_user_only(self, db_session):
        """Sign-up adds a user row and commits; no profile."""
        user = await AuthService(db_session).sign_up("New@Example.com", "secret123", "Awa")

        assert user.email == "new@example.com"
        assert user.role == "member"
        added = [c.args[0] for c in db_session.add.call_args_list]
        assert added == [user]
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, db_session):
        """The stored hash verifies with argon2."""
        user = await AuthService(db_session).sign_up("a@example.com", "secret123")

        assert user.password_hash != "secret123"
        assert PasswordHasher().verify(user.password_hash, "secret123")

    @pytest.mark.asyncio
    async def test_duplicate_email(self, db_session):
        """Existing email raises EmailAlreadyRegisteredError."""
        db_session.execute = AsyncMock(return_value=make_result(scalar=uuid4()))

        with pytest.raises(EmailAlreadyRegisteredError):
            await AuthService(db_session).sign_up("taken@example.com", "secret123")

        db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_duplicate(self, db_session):
        """IntegrityError on flush is reported as a duplicate email."""
        db_session.flush = AsyncMock(side_effect=IntegrityError("stmt", {}, Exception("dup")))

        with pytest.raises(EmailAlreadyRegisteredError):
            await AuthService(db_session).sign_up("race@example.com", "secret123")

        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, db_session):
        """A password under the minimum length is refused before any query."""
        with pytest.raises(RegistrationValidationError, match="at least 6"):
            await AuthService(db_session).sign_up("short@example.com", "1")

        db_session.execute.assert_not_called()
        db_session.add.assert_not_called()


class TestSignIn:
    """Tests for sign_in."""

    @pytest.mark.asyncio
    async def test_unknown_email_has_no_side_effect(self, db_session):
        """Failed sign-in creates nothing."""
        with pytest.raises(InvalidCredentialsError):
            await AuthService(db_session).sign_in("nobody@example.com", "secret123")

        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()
        db_session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_password_has_no_side_effect(self, db_session, hashed_user):
        """Wrong password: no profile, no token."""
        db_session.execute = AsyncMock(return_value=make_result(scalar=hashed_user))

        with pytest.raises(InvalidCredentialsError):
            await AuthService(db_session).sign_in(hashed_user.email, "wrong-password")

        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_creates_missing_profile(self, db_session, hashed_user):
        """First sign-in creates the profile and issues a token."""
        db_session.execute = AsyncMock(return_value=make_result(scalar=hashed_user))

        result = await AuthService(db_session).sign_in(hashed_user.email, "secret123")

        profile = db_session.add.call_args.args[0]
        assert isinstance(profile, Profile)
        assert profile.id == hashed_user.id
        assert profile.full_name == hashed_user.full_name
        assert result.redirect_to == "/dashboard"
        assert result.role == UserRole.MEMBER
        payload = jwt.decode(result.token.access_token, SECRET, algorithms=["HS256"])
        assert payload["sub"] == str(hashed_user.id)
        assert payload["role"] == "member"

    @pytest.mark.asyncio
    async def test_existing_profile_untouched(self, db_session, hashed_user):
        """No insert when the profile exists."""
        db_session.execute = AsyncMock(return_value=make_result(scalar=hashed_user))
        db_session.get = AsyncMock(return_value=Profile(id=hashed_user.id, full_name="Awa"))

        await AuthService(db_session).sign_in(hashed_user.email, "secret123")

        db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_redirects_to_admin(self, db_session):
        """Admins land on /admin."""
        admin = create_user(role=UserRole.ADMIN, password_hash=PasswordHasher().hash("secret123"))
        db_session.execute = AsyncMock(return_value=make_result(scalar=admin))

        result = await AuthService(db_session).sign_in(admin.email, "secret123")

        assert result.redirect_to == "/admin"

    @pytest.mark.asyncio
    async def test_profile_failure_does_not_fail_login(self, db_session, hashed_user):
        """A database error while creating the profile is logged, not raised."""
        db_session.execute = AsyncMock(return_value=make_result(scalar=hashed_user))
        db_session.commit = AsyncMock(side_effect=OperationalError("stmt", {}, Exception("down")))

        result = await AuthService(db_session).sign_in(hashed_user.email, "secret123")

        assert result.token.access_token
        db_session.rollback.assert_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_profile_insert_tolerated(self, db_session, hashed_user):
        """IntegrityError on the profile insert re-reads the winner's row."""
        existing = Profile(id=hashed_user.id, full_name="Awa")
        db_session.get = AsyncMock(side_effect=[None, existing])
        db_session.commit = AsyncMock(side_effect=IntegrityError("stmt", {}, Exception("dup")))

        profile = await AuthService(db_session).ensure_profile(hashed_user)

        assert profile is existing


class TestSignOut:
    """Tests for sign_out."""

    @pytest.mark.asyncio
    async def test_sign_out_revokes_token(self, db_session):
        """The caller's token lands in the revocation store."""
        identity = make_identity()

        await AuthService(db_session).sign_out(identity)

        token_hash = TokenRevocationService.hash_token(identity.token)
        assert token_hash in TokenRevocationService._cache
        db_session.merge.assert_awaited_once()


class TestRoles:
    """Tests for get_user_role."""

    @pytest.mark.asyncio
    async def test_role_from_database(self, db_session):
        db_session.execute = AsyncMock(return_value=make_result(scalar="admin"))
        assert await AuthService(db_session).get_user_role(uuid4()) == UserRole.ADMIN

    @pytest.mark.asyncio
    async def test_missing_user_is_member(self, db_session):
        assert await AuthService(db_session).get_user_role(uuid4()) == UserRole.MEMBER


class TestTokens:
    """Tests for issue_token / decode_token."""

    def test_round_trip(self, db_session):
        """Decoded identity matches the issued claims."""
        service = AuthService(db_session)
        user_id = uuid4()

        issued = service.issue_token(user_id, "awa@example.com", UserRole.ADMIN)
        identity = service.decode_token(issued.access_token)

        assert identity.user_id == user_id
        assert identity.role == UserRole.ADMIN
        assert identity.is_admin
        assert identity.token == issued.access_token

    def test_expired_token(self, db_session):
        """Expired tokens raise AuthenticationError."""
        past = datetime.now(UTC) - timedelta(hours=2)
        token = jwt.encode(
            {"sub": str(uuid4()), "email": "a@b.c", "role": "member", "iat": past, "exp": past},
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(AuthenticationError, match="Token expired"):
            AuthService(db_session).decode_token(token)

    def test_wrong_secret(self, db_session):
        """Tokens signed with another key are rejected."""
        token = AuthService(db_session, jwt_secret="x" * 40).issue_token(
            uuid4(), "a@b.c", UserRole.MEMBER
        )

        with pytest.raises(AuthenticationError, match="Invalid token"):
            AuthService(db_session).decode_token(token.access_token)

    def test_garbage_token(self, db_session):
        with pytest.raises(AuthenticationError):
            AuthService(db_session).decode_token("not-a-jwt")
