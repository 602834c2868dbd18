"""
Exception Classes - Strongly typed exception hierarchy.

Every exception carries typed attributes; route handlers map them to HTTP codes.
"""

from decimal import Decimal
from uuid import UUID


class PlatformError(Exception):
    """Base exception for all platform errors."""

    pass


# ============================================================================
# Validation / Auth
# ============================================================================


class RegistrationValidationError(PlatformError):
    """Raised when a registration form fails local validation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class EmailAlreadyRegisteredError(PlatformError):
    """Raised when signing up with an email that already has an account."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Email already registered: {email}")


class InvalidCredentialsError(PlatformError):
    """Raised when sign-in credentials don't match."""

    def __init__(self) -> None:
        super().__init__("Invalid login credentials")


class AuthenticationError(PlatformError):
    """Raised when authentication fails (missing, invalid or revoked token)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


# ============================================================================
# Resources
# ============================================================================


class ResourceNotFoundError(PlatformError):
    """Raised when a requested resource doesn't exist (or isn't the caller's)."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class WriteVerificationError(PlatformError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(PlatformError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


# ============================================================================
# Ô Secours
# ============================================================================


class SubscriptionExistsError(PlatformError):
    """Raised when the user already has an active subscription of this type."""

    def __init__(self, subscription_type: str, existing_id: UUID) -> None:
        self.subscription_type = subscription_type
        self.existing_id = existing_id
        super().__init__(f"Already subscribed to {subscription_type} ({existing_id})")


class TokenLimitError(PlatformError):
    """Raised when a token purchase is outside the allowed bounds."""

    def __init__(self, requested: int, min_tokens: int, max_tokens: int) -> None:
        self.requested = requested
        self.min_tokens = min_tokens
        self.max_tokens = max_tokens
        super().__init__(
            f"Token amount {requested} outside allowed range [{min_tokens}, {max_tokens}]"
        )


class PaymentNotCreditableError(PlatformError):
    """Raised when a payment can't pay for a token purchase."""

    def __init__(self, payment_id: UUID, reason: str) -> None:
        self.payment_id = payment_id
        self.reason = reason
        super().__init__(f"Payment {payment_id} cannot be credited: {reason}")


class InsufficientTokensError(PlatformError):
    """Raised when a rescue claim exceeds the subscription's token balance."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient tokens. Balance: {balance}, Required: {required}")


class PolicyNotConfiguredError(PlatformError):
    """Raised when no token policy exists for a subscription type."""

    def __init__(self, subscription_type: str) -> None:
        self.subscription_type = subscription_type
        super().__init__(f"No token policy configured for {subscription_type}")


# ============================================================================
# Agents
# ============================================================================


class AgentAlreadyExistsError(PlatformError):
    """Raised when a user registers as an agent twice."""

    def __init__(self, agent_id: UUID) -> None:
        self.agent_id = agent_id
        super().__init__(f"User is already an agent ({agent_id})")


class NoPendingCommissionsError(PlatformError):
    """Raised when withdrawing with nothing pending."""

    def __init__(self, agent_id: UUID) -> None:
        self.agent_id = agent_id
        super().__init__(f"No pending commissions for agent {agent_id}")


# ============================================================================
# Payments
# ============================================================================


class UnsupportedGatewayError(PlatformError):
    """Raised when a gateway id has no adapter."""

    def __init__(self, gateway_id: str) -> None:
        self.gateway_id = gateway_id
        super().__init__(f"Unsupported payment gateway: {gateway_id}")


class PaymentProviderError(PlatformError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(PlatformError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class InvalidPaymentTransitionError(PlatformError):
    """Raised when a payment status change would leave a terminal state."""

    def __init__(self, payment_id: UUID, current: str, requested: str) -> None:
        self.payment_id = payment_id
        self.current = current
        self.requested = requested
        super().__init__(f"Payment {payment_id} cannot move from {current} to {requested}")


class DuplicatePaymentError(PlatformError):
    """Raised when an idempotency key is reused for a different payment."""

    def __init__(self, existing_id: UUID, amount: Decimal) -> None:
        self.existing_id = existing_id
        self.amount = amount
        super().__init__(f"Idempotency conflict: existing payment {existing_id} ({amount})")
