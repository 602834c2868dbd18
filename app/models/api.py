"""
API Models - Pydantic models for request/response validation.

All request and response bodies are strongly typed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class UserRole(str, Enum):
    """Role returned by get_user_role."""

    MEMBER = "member"
    ADMIN = "admin"


class UserType(str, Enum):
    """Account type chosen at registration."""

    MEMBER = "member"
    EMPLOYEE = "employee"
    EMPLOYER = "employer"
    PARTNER = "partner"


class MembershipTier(str, Enum):
    """Membership tier enumeration."""

    ESSENTIAL = "essential"
    PREMIUM = "premium"
    ELITE = "elite"


class GatewayType(str, Enum):
    """Payment gateway family."""

    MOBILE_MONEY = "mobile_money"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentType(str, Enum):
    """What a payment is for."""

    MEMBERSHIP = "membership"
    SECOURS_TOKENS = "secours_tokens"
    OTHER = "other"


class SubscriptionType(str, Enum):
    """Ô Secours subscription type enumeration."""

    MOTORS = "motors"
    CATA_CATANIS = "cata_catanis"
    AUTO = "auto"
    TELEPHONE = "telephone"
    SCHOOL_FEES = "school_fees"


class RescueStatus(str, Enum):
    """Rescue request status enumeration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class AgentType(str, Enum):
    """Agent type enumeration."""

    INDIVIDUAL = "individual"
    BUSINESS = "business"


# ============================================================================
# Auth Models
# ============================================================================


class SignUpRequest(BaseModel):
    """POST /v1/auth/signup request body."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)
    full_name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    user_type: UserType = UserType.MEMBER

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Emails are matched case-insensitively."""
        if "@" not in v:
            raise ValueError("email must contain @")
        return v.strip().lower()


class SignInRequest(BaseModel):
    """POST /v1/auth/signin request body."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Emails are matched case-insensitively."""
        return v.strip().lower()


class UserResponse(BaseModel):
    """Public view of a user."""

    id: UUID
    email: str
    phone: str | None = None
    full_name: str | None = None
    role: UserRole
    user_type: UserType


class SignInResponse(BaseModel):
    """POST /v1/auth/signin response."""

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserResponse
    redirect_to: str


class RoleResponse(BaseModel):
    """GET /v1/auth/role response."""

    role: UserRole


# ============================================================================
# Registration / Profile / Membership Models
# ============================================================================


class RegistrationRequest(BaseModel):
    """POST /v1/register request body.

    Password rules are checked by RegistrationService before any write,
    so they are not enforced here.
    """

    full_name: str = Field(..., max_length=255)
    email: str = Field("", max_length=255)
    phone: str = Field("", max_length=50)
    address: str = Field("", max_length=500)
    city: str = Field("", max_length=100)
    country: str = Field("Mali", max_length=100)
    password: str = Field(..., max_length=255)
    confirm_password: str = Field(..., max_length=255)
    tier: MembershipTier = MembershipTier.ESSENTIAL
    physical_card_requested: bool = False
    referral_code: str = Field("", max_length=32)
    user_type: UserType = UserType.MEMBER


class ProfileResponse(BaseModel):
    """Profile view."""

    id: UUID
    full_name: str | None
    phone: str | None
    address: str | None
    city: str | None
    country: str | None
    profile_image_url: str | None


class ProfileUpdateRequest(BaseModel):
    """PATCH /v1/me/profile request body - only provided fields change."""

    full_name: str | None = Field(None, min_length=1, max_length=255)
    phone: str | None = Field(None, max_length=50)
    address: str | None = Field(None, max_length=500)
    city: str | None = Field(None, max_length=100)
    country: str | None = Field(None, max_length=100)
    profile_image_url: str | None = Field(None, max_length=1000)


class MembershipResponse(BaseModel):
    """Membership view."""

    id: UUID
    member_id: str
    tier: MembershipTier
    start_date: datetime
    expiry_date: datetime
    is_active: bool
    physical_card_requested: bool


class RegistrationResponse(BaseModel):
    """POST /v1/register response."""

    user: UserResponse
    profile: ProfileResponse
    membership: MembershipResponse | None = None
    referral_attributed: bool = False


class TierInfo(BaseModel):
    """One membership tier's pricing."""

    tier: MembershipTier
    name: str
    registration_fee: Decimal
    monthly_fee: Decimal
    discount_percentage: int
    first_payment: Decimal


class CardValidationResponse(BaseModel):
    """GET /v1/memberships/validate/{member_id} response."""

    valid: bool
    member_id: str
    name: str | None = None
    membership_tier: MembershipTier | None = None
    expiry_date: str | None = None  # MM/YY
    reason: str | None = None


# ============================================================================
# Payment Models
# ============================================================================


class GatewayResponse(BaseModel):
    """Public view of a payment gateway (no credentials)."""

    id: str
    name: str
    type: GatewayType
    is_active: bool
    fee_percentage: Decimal
    fee_fixed: Decimal
    supported_currencies: list[str]
    description: str
    icon: str
    fees: Decimal | None = None
    total_amount: Decimal | None = None


class GatewayUpdateRequest(BaseModel):
    """PATCH /v1/admin/payments/gateways/{id} request body."""

    name: str | None = Field(None, min_length=1, max_length=100)
    is_active: bool | None = None
    fee_percentage: Decimal | None = Field(None, ge=0, le=100)
    fee_fixed: Decimal | None = Field(None, ge=0)
    supported_currencies: list[str] | None = None
    description: str | None = Field(None, max_length=500)


class CustomerInfo(BaseModel):
    """Contact details forwarded to the provider."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field("", max_length=255)
    phone: str = Field("", max_length=50)


class CreatePaymentRequest(BaseModel):
    """POST /v1/payments request body."""

    gateway_id: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: str = Field("XOF", min_length=3, max_length=3)
    payment_type: PaymentType = PaymentType.MEMBERSHIP
    membership_tier: MembershipTier | None = None
    customer: CustomerInfo
    description: str = Field("", max_length=500)
    idempotency_key: str | None = Field(None, max_length=255)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Ensure currency is uppercase."""
        return v.upper()


class PaymentResponse(BaseModel):
    """Normalized result of a payment dispatch."""

    success: bool
    payment_id: UUID | None = None
    transaction_id: str | None = None
    payment_url: str | None = None
    instructions: str | None = None
    status: PaymentStatus | None = None
    gateway_response: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class PaymentRecordResponse(BaseModel):
    """A stored payment."""

    id: UUID
    payment_type: PaymentType
    payment_method: str
    amount: Decimal
    fees: Decimal
    currency: str
    status: PaymentStatus
    transaction_reference: str
    provider_transaction_id: str | None
    payment_url: str | None
    created_at: datetime


class WebhookAckResponse(BaseModel):
    """POST /v1/payments/webhooks/{gateway_id} response."""

    received: bool
    payment_id: UUID | None = None
    status: PaymentStatus | None = None


# ============================================================================
# Ô Secours Models
# ============================================================================


class SubscribeRequest(BaseModel):
    """POST /v1/secours/subscriptions request body."""

    subscription_type: SubscriptionType


class SubscriptionResponse(BaseModel):
    """A Secours subscription."""

    id: UUID
    subscription_type: SubscriptionType
    is_active: bool
    token_balance: int
    created_at: datetime


class PurchaseTokensRequest(BaseModel):
    """POST /v1/secours/tokens/purchase request body; paid by a completed secours_tokens payment."""

    subscription_id: UUID
    token_amount: int = Field(..., gt=0)
    payment_id: UUID


class TokenTransactionResponse(BaseModel):
    """A token purchase."""

    id: UUID
    subscription_id: UUID
    subscription_type: SubscriptionType | None = None
    token_amount: int
    token_value_fcfa: Decimal
    total_amount_fcfa: Decimal
    payment_method: str
    created_at: datetime


class RescueRequestCreate(BaseModel):
    """POST /v1/secours/rescue-requests request body."""

    subscription_id: UUID
    request_description: str = Field(..., min_length=1, max_length=2000)
    rescue_value_fcfa: Decimal = Field(..., gt=0)


class RescueRequestResponse(BaseModel):
    """A rescue request."""

    id: UUID
    subscription_id: UUID
    subscription_type: SubscriptionType | None = None
    request_description: str
    rescue_value_fcfa: Decimal
    tokens_reserved: int
    status: RescueStatus
    created_at: datetime


class TokenLimits(BaseModel):
    """Min/max tokens per purchase."""

    min_tokens: int
    max_tokens: int


class TokenInfoResponse(BaseModel):
    """GET /v1/secours/token-info/{type} response."""

    subscription_type: SubscriptionType
    token_value: Decimal
    limits: TokenLimits


class TokenPolicyRequest(BaseModel):
    """PUT /v1/admin/secours/policies/{type} request body."""

    token_value_fcfa: Decimal = Field(..., gt=0)
    min_tokens: int = Field(..., ge=1)
    max_tokens: int = Field(..., ge=1)


class SecurityAlertResponse(BaseModel):
    """One security monitor alert."""

    id: str
    type: str
    title: str
    message: str
    severity: str


# ============================================================================
# Agent Models
# ============================================================================


class RegisterAgentRequest(BaseModel):
    """POST /v1/agents request body."""

    agent_type: AgentType = AgentType.INDIVIDUAL


class AgentResponse(BaseModel):
    """Agent view."""

    id: UUID
    user_id: UUID
    referral_code: str
    referral_link: str
    agent_type: AgentType
    total_commissions: Decimal
    commissions_withdrawn: Decimal
    commissions_pending: Decimal
    is_active: bool
    created_at: datetime


class ReferralResponse(BaseModel):
    """A referral."""

    id: UUID
    agent_id: UUID
    referred_user_id: UUID
    referred_name: str | None = None
    commission_amount: Decimal
    commission_paid: bool
    created_at: datetime


class AgentStatusUpdateRequest(BaseModel):
    """PATCH /v1/admin/agents/{id} request body."""

    is_active: bool


class AgentTotalsResponse(BaseModel):
    """Commission totals across all agents."""

    agent_count: int
    total_commissions: Decimal
    commissions_pending: Decimal


# ============================================================================
# Discount Directory Models
# ============================================================================


class SectorRequest(BaseModel):
    """Create/replace a sector."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=1000)
    is_active: bool = True


class SectorUpdateRequest(BaseModel):
    """Partial sector update."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    is_active: bool | None = None


class SectorResponse(BaseModel):
    """Sector view."""

    id: UUID
    name: str
    description: str
    is_active: bool


class MerchantRequest(BaseModel):
    """Create a merchant."""

    name: str = Field(..., min_length=1, max_length=255)
    sector_id: UUID
    discount_percentage: Decimal = Field(..., ge=0, le=100)
    location: str = Field("", max_length=255)
    contact_phone: str = Field("", max_length=50)
    contact_email: str = Field("", max_length=255)
    description: str = Field("", max_length=2000)
    website: str = Field("", max_length=500)
    is_active: bool = True
    featured: bool = False


class MerchantUpdateRequest(BaseModel):
    """Partial merchant update."""

    name: str | None = Field(None, min_length=1, max_length=255)
    sector_id: UUID | None = None
    discount_percentage: Decimal | None = Field(None, ge=0, le=100)
    location: str | None = Field(None, max_length=255)
    contact_phone: str | None = Field(None, max_length=50)
    contact_email: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=2000)
    website: str | None = Field(None, max_length=500)
    is_active: bool | None = None
    featured: bool | None = None


class MerchantResponse(BaseModel):
    """Merchant view."""

    id: UUID
    name: str
    sector_id: UUID
    sector_name: str | None = None
    discount_percentage: Decimal
    location: str
    contact_phone: str
    contact_email: str
    description: str
    website: str
    is_active: bool
    featured: bool


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
