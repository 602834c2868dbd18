"""
Tests for exception classes.

Covers the typed attributes and messages the routes rely on.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from app.exceptions import (
    AgentAlreadyExistsError,
    AuthenticationError,
    DataIntegrityError,
    DuplicatePaymentError,
    EmailAlreadyRegisteredError,
    InsufficientTokensError,
    InvalidCredentialsError,
    InvalidPaymentTransitionError,
    NoPendingCommissionsError,
    PaymentNotCreditableError,
    PaymentProviderError,
    PlatformError,
    PolicyNotConfiguredError,
    RegistrationValidationError,
    ResourceNotFoundError,
    SubscriptionExistsError,
    TokenLimitError,
    UnsupportedGatewayError,
    WebhookVerificationError,
    WriteVerificationError,
)


class TestMessages:
    """String representations."""

    def test_insufficient_tokens(self):
        exc = InsufficientTokensError(balance=2, required=4)

        assert str(exc) == "Insufficient tokens. Balance: 2, Required: 4"
        assert (exc.balance, exc.required) == (2, 4)

    def test_unsupported_gateway(self):
        assert str(UnsupportedGatewayError("paypal")) == "Unsupported payment gateway: paypal"

    def test_invalid_credentials(self):
        assert str(InvalidCredentialsError()) == "Invalid login credentials"

    def test_token_limit(self):
        exc = TokenLimitError(5, 10, 1000)

        assert "[10, 1000]" in str(exc)

    def test_resource_not_found(self):
        exc = ResourceNotFoundError("Payment", "abc")

        assert str(exc) == "Payment not found: abc"
        assert exc.resource_type == "Payment"

    def test_transition(self):
        payment_id = uuid4()
        exc = InvalidPaymentTransitionError(payment_id, "completed", "failed")

        assert str(exc) == f"Payment {payment_id} cannot move from completed to failed"

    def test_payment_not_creditable(self):
        payment_id = uuid4()
        exc = PaymentNotCreditableError(payment_id, "payment already credited")

        assert str(exc) == f"Payment {payment_id} cannot be credited: payment already credited"
        assert exc.reason == "payment already credited"

    def test_message_attributes(self):
        assert RegistrationValidationError("Passwords do not match").message == (
            "Passwords do not match"
        )
        assert AuthenticationError("Token expired").message == "Token expired"
        assert PaymentProviderError("down").message == "down"
        assert WebhookVerificationError("bad").message == "bad"


class TestHierarchy:
    """Every error is a PlatformError."""

    @pytest.mark.parametrize(
        "exc",
        [
            RegistrationValidationError("x"),
            EmailAlreadyRegisteredError("a@b.c"),
            InvalidCredentialsError(),
            AuthenticationError("x"),
            ResourceNotFoundError("X", "1"),
            WriteVerificationError("x"),
            DataIntegrityError("x"),
            SubscriptionExistsError("auto", uuid4()),
            TokenLimitError(1, 10, 100),
            InsufficientTokensError(0, 1),
            PaymentNotCreditableError(uuid4(), "x"),
            PolicyNotConfiguredError("auto"),
            AgentAlreadyExistsError(uuid4()),
            NoPendingCommissionsError(uuid4()),
            UnsupportedGatewayError("x"),
            PaymentProviderError("x"),
            WebhookVerificationError("x"),
            InvalidPaymentTransitionError(uuid4(), "completed", "failed"),
            DuplicatePaymentError(uuid4(), Decimal("1")),
        ],
    )
    def test_is_platform_error(self, exc):
        assert isinstance(exc, PlatformError)
