"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES for business data - structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from app.models.api import GatewayType, MembershipTier, PaymentStatus, UserRole


@dataclass(frozen=True)
class TierPricing:
    """Pricing of one membership tier (FCFA)."""

    tier: MembershipTier
    name: str
    registration_fee: Decimal
    monthly_fee: Decimal
    discount_percentage: int

    def __post_init__(self) -> None:
        """Validate pricing constraints."""
        if self.registration_fee < 0 or self.monthly_fee < 0:
            raise ValueError(f"Tier fees cannot be negative: {self.tier}")
        if not 0 <= self.discount_percentage <= 100:
            raise ValueError(f"Invalid discount percentage: {self.discount_percentage}")

    @property
    def first_payment(self) -> Decimal:
        """Amount due at sign-up: registration fee plus the first month."""
        return self.registration_fee + self.monthly_fee


@dataclass(frozen=True)
class GatewayConfig:
    """A payment gateway as seen by the registry. Holds no credentials."""

    id: str
    name: str
    type: GatewayType
    is_active: bool
    fee_percentage: Decimal
    fee_fixed: Decimal
    supported_currencies: tuple[str, ...]
    description: str = ""
    icon: str = ""

    def __post_init__(self) -> None:
        """Validate fee constraints."""
        if not Decimal("0") <= self.fee_percentage <= Decimal("100"):
            raise ValueError(f"Invalid fee percentage: {self.fee_percentage}")
        if self.fee_fixed < 0:
            raise ValueError(f"Fixed fee cannot be negative: {self.fee_fixed}")

    def supports_currency(self, currency: str) -> bool:
        """Check whether the gateway accepts the currency code."""
        return currency.upper() in self.supported_currencies


@dataclass(frozen=True)
class PaymentRequest:
    """What an adapter needs to start a payment."""

    reference: str
    amount: Decimal
    currency: str
    description: str
    customer_name: str
    customer_email: str
    customer_phone: str

    def __post_init__(self) -> None:
        """Validate payment constraints."""
        if self.amount <= 0:
            raise ValueError(f"Payment amount must be positive: {self.amount}")
        if not self.reference:
            raise ValueError("reference cannot be empty")


@dataclass(frozen=True)
class PaymentInitiation:
    """Normalized provider response to an initiation call."""

    provider_transaction_id: str
    status: PaymentStatus
    payment_url: str | None = None
    instructions: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookEvent:
    """Verified provider notification."""

    status: PaymentStatus
    reference: str | None = None
    provider_transaction_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """A webhook must identify the payment somehow."""
        if not self.reference and not self.provider_transaction_id:
            raise ValueError("webhook event carries no payment reference")


@dataclass(frozen=True)
class TokenPolicy:
    """Server-side pricing and purchase bounds for a subscription type."""

    subscription_type: str
    token_value_fcfa: Decimal
    min_tokens: int
    max_tokens: int

    def __post_init__(self) -> None:
        """Validate policy constraints."""
        if self.token_value_fcfa <= 0:
            raise ValueError(f"Token value must be positive: {self.token_value_fcfa}")
        if self.min_tokens < 1 or self.max_tokens < self.min_tokens:
            raise ValueError(f"Invalid token bounds: [{self.min_tokens}, {self.max_tokens}]")


@dataclass(frozen=True)
class PurchaseActivity:
    """A token purchase, as seen by the security monitor."""

    token_amount: int
    created_at: datetime


@dataclass(frozen=True)
class RescueActivity:
    """A rescue request, as seen by the security monitor."""

    created_at: datetime


@dataclass(frozen=True)
class SecurityAlert:
    """Alert raised by the activity monitor."""

    id: str
    type: str
    title: str
    message: str
    severity: str


@dataclass(frozen=True)
class CardValidation:
    """Outcome of scanning a member card."""

    valid: bool
    member_id: str
    name: str | None = None
    tier: MembershipTier | None = None
    expiry: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity resolved from a bearer token."""

    user_id: UUID
    email: str
    role: UserRole
    token: str
    token_expires_at: datetime

    @property
    def is_admin(self) -> bool:
        """Whether the user holds the admin role."""
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed session token."""

    access_token: str
    expires_at: datetime
