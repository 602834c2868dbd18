"""
Tests for member registration.

Form validation, single-transaction writes and referral attribution.
"""

import re
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.db.models import Membership, Profile, Referral, User
from app.exceptions import EmailAlreadyRegisteredError, RegistrationValidationError
from app.models.api import MembershipTier, RegistrationRequest, UserType
from app.services.membership import (
    RegistrationService,
    generate_placeholder_email,
    validate_registration_form,
)
from tests.conftest import create_agent, make_result


def make_form(**overrides) -> RegistrationRequest:
    """A valid registration form with optional overrides."""
    fields = {
        "full_name": "Moussa Keita",
        "email": "moussa@example.com",
        "phone": "76 12 34 56",
        "address": "Rue 12",
        "city": "Bamako",
        "country": "Mali",
        "password": "secret123",
        "confirm_password": "secret123",
        "tier": MembershipTier.PREMIUM,
    }
    fields.update(overrides)
    return RegistrationRequest(**fields)


def added(db_session, model) -> list:
    """Objects of a type passed to session.add."""
    return [c.args[0] for c in db_session.add.call_args_list if isinstance(c.args[0], model)]


class TestFormValidation:
    """Checks that run before any database call."""

    @pytest.mark.asyncio
    async def test_mismatched_passwords_rejected_without_db(self, db_session):
        """Passwords that differ fail before touching the database."""
        form = make_form(password="secret123", confirm_password="secret124")

        with pytest.raises(RegistrationValidationError, match="Passwords do not match"):
            await RegistrationService(db_session).register(form)

        db_session.execute.assert_not_called()
        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_short_password_rejected_without_db(self, db_session):
        """Passwords under 6 characters fail before touching the database."""
        form = make_form(password="abc12", confirm_password="abc12")

        with pytest.raises(
            RegistrationValidationError, match="Password must be at least 6 characters"
        ):
            await RegistrationService(db_session).register(form)

        db_session.execute.assert_not_called()
        db_session.add.assert_not_called()
        db_session.commit.assert_not_called()

    def test_mismatch_checked_before_length(self):
        """A short, mismatched pair reports the mismatch."""
        with pytest.raises(RegistrationValidationError, match="Passwords do not match"):
            validate_registration_form(make_form(password="a", confirm_password="b"))

    def test_blank_full_name_rejected(self):
        """Whitespace-only names are rejected."""
        with pytest.raises(RegistrationValidationError, match="Full name is required"):
            validate_registration_form(make_form(full_name="   "))

    def test_six_characters_is_enough(self):
        """Exactly six characters passes."""
        validate_registration_form(make_form(password="abcdef", confirm_password="abcdef"))


class TestPlaceholderEmail:
    """Tests for generated emails."""

    def test_format(self):
        """user_<ms>_<9 base36>@<domain>."""
        email = generate_placeholder_email("club66.org")
        assert re.fullmatch(r"user_\d{13}_[0-9a-z]{9}@club66\.org", email)

    def test_unique(self):
        """Two calls differ."""
        assert generate_placeholder_email() != generate_placeholder_email()


class TestRegister:
    """Tests for RegistrationService.register."""

    @pytest.fixture
    def writable_session(self, db_session):
        """Session whose verification reads find the written rows."""
        db_session.get = AsyncMock(return_value=MagicMock(spec=Membership))
        return db_session

    @pytest.mark.asyncio
    async def test_member_gets_user_profile_and_membership(self, writable_session):
        """A member registration writes user, profile and membership in one commit."""
        result = await RegistrationService(writable_session).register(make_form())

        assert isinstance(result.user, User)
        assert result.user.email == "moussa@example.com"
        assert result.user.password_hash != "secret123"
        assert isinstance(result.profile, Profile)
        assert result.profile.city == "Bamako"
        assert result.membership is not None
        assert result.membership.tier == MembershipTier.PREMIUM.value
        assert re.fullmatch(r"ML-\d{4}\d{6}", result.membership.member_id)
        assert result.referral is None
        writable_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_partner_gets_no_membership(self, writable_session):
        """Only members receive a membership."""
        result = await RegistrationService(writable_session).register(
            make_form(user_type=UserType.PARTNER)
        )

        assert result.membership is None
        assert added(writable_session, Membership) == []

    @pytest.mark.asyncio
    async def test_blank_email_replaced(self, writable_session):
        """Registrations without email get a generated one."""
        result = await RegistrationService(writable_session).register(make_form(email=""))

        assert result.user.email.startswith("user_")
        assert result.user.email.endswith("@club66.org")

    @pytest.mark.asyncio
    async def test_referral_code_credits_agent(self, writable_session):
        """A valid code creates a referral and credits 10% of the registration fee."""
        agent = create_agent(uuid4(), referral_code="EGAB12CD")
        writable_session.execute = AsyncMock(
            side_effect=[
                make_result(),  # email lookup
                make_result(),  # active membership lookup
                make_result(),  # member id collision check
                make_result(scalar=agent),  # agent by referral code
            ]
        )

        result = await RegistrationService(writable_session).register(
            make_form(referral_code="egab12cd")
        )

        assert isinstance(result.referral, Referral)
        assert result.referral.commission_amount == Decimal("1000.00")
        assert agent.commissions_pending == Decimal("1000.00")
        assert agent.total_commissions == Decimal("1000.00")
        writable_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_referral_code_is_ignored(self, writable_session):
        """Unknown codes never fail registration."""
        result = await RegistrationService(writable_session).register(
            make_form(referral_code="EGNOPE00")
        )

        assert result.referral is None
        assert added(writable_session, Referral) == []
        writable_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_inactive_agent_earns_nothing(self, writable_session):
        """Codes of deactivated agents are ignored."""
        agent = create_agent(uuid4(), is_active=False)
        writable_session.execute = AsyncMock(
            side_effect=[make_result(), make_result(), make_result(), make_result(scalar=agent)]
        )

        result = await RegistrationService(writable_session).register(
            make_form(referral_code=agent.referral_code)
        )

        assert result.referral is None
        assert agent.commissions_pending == Decimal("0")

    @pytest.mark.asyncio
    async def test_duplicate_email_rolls_back(self, writable_session):
        """A taken email aborts the whole registration."""
        writable_session.execute = AsyncMock(return_value=make_result(scalar=uuid4()))

        with pytest.raises(EmailAlreadyRegisteredError):
            await RegistrationService(writable_session).register(make_form())

        writable_session.rollback.assert_awaited()
        writable_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_after_user_insert_rolls_back_everything(self, writable_session):
        """No partial registrations: a later failure undoes the user too."""
        writable_session.flush = AsyncMock(side_effect=[None, RuntimeError("profile insert failed")])

        with pytest.raises(RuntimeError):
            await RegistrationService(writable_session).register(make_form())

        writable_session.rollback.assert_awaited_once()
        writable_session.commit.assert_not_called()
