"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Money columns are Numeric (FCFA).
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


MONEY = Numeric(14, 2)


class User(Base):
    """
    ORM model for users table.

    Identity and credentials. Profile data lives in profiles.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    user_type: Mapped[str] = mapped_column(String(20), nullable=False, default="member")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("role IN ('member', 'admin')", name="ck_users_role"),
        Index("idx_users_role", "role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Profile(Base):
    """ORM model for profiles table (1:1 with users)."""

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True, default="Mali")
    profile_image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class Membership(Base):
    """
    ORM model for memberships table.

    At most one active membership per user (partial unique index).
    """

    __tablename__ = "memberships"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    member_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    physical_card_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("tier IN ('essential', 'premium', 'elite')", name="ck_memberships_tier"),
        Index("idx_memberships_user_id", "user_id"),
        Index(
            "uq_memberships_one_active",
            "user_id",
            unique=True,
            postgresql_where=(is_active.is_(True)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Membership(member_id={self.member_id}, tier={self.tier}, active={self.is_active})>"


class PaymentGateway(Base):
    """
    ORM model for payment_gateways table.

    Overrides the built-in gateway defaults. Holds no credentials.
    """

    __tablename__ = "payment_gateways"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    fee_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    fee_fixed: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    supported_currencies: Mapped[list[str]] = mapped_column(
        ARRAY(String(3)), nullable=False, default=list
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "fee_percentage >= 0 AND fee_percentage <= 100", name="ck_gateway_fee_percentage"
        ),
        CheckConstraint("fee_fixed >= 0", name="ck_gateway_fee_fixed"),
    )


class Payment(Base):
    """
    ORM model for payments table.

    One row per payment attempt. Status moves pending -> completed|failed only.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    fees: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    transaction_reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    provider_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    gateway_response: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    membership_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name="ck_payment_status"
        ),
        UniqueConstraint("user_id", "idempotency_key", name="uq_payment_idempotency"),
        Index("idx_payments_user_id", "user_id"),
        Index("idx_payments_status", "status"),
        Index(
            "idx_payments_provider_txn",
            "provider_transaction_id",
            postgresql_where=(provider_transaction_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Payment(id={self.id}, method={self.payment_method}, "
            f"amount={self.amount}, status={self.status})>"
        )


class SecoursSubscription(Base):
    """ORM model for secours_subscriptions table."""

    __tablename__ = "secours_subscriptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    subscription_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    token_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    transactions: Mapped[list["TokenTransaction"]] = relationship(
        back_populates="subscription", lazy="noload"
    )
    rescue_requests: Mapped[list["RescueRequest"]] = relationship(
        back_populates="subscription", lazy="noload"
    )

    __table_args__ = (
        CheckConstraint("token_balance >= 0", name="ck_secours_balance_non_negative"),
        Index("idx_secours_subscriptions_user_id", "user_id"),
        Index(
            "uq_secours_one_active_per_type",
            "user_id",
            "subscription_type",
            unique=True,
            postgresql_where=(is_active.is_(True)),
        ),
    )


class TokenTransaction(Base):
    """ORM model for token_transactions table (immutable ledger)."""

    __tablename__ = "token_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    subscription_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("secours_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    token_value_fcfa: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_amount_fcfa: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    subscription: Mapped[SecoursSubscription] = relationship(
        back_populates="transactions", lazy="joined"
    )

    __table_args__ = (
        CheckConstraint("token_amount > 0", name="ck_token_amount_positive"),
        UniqueConstraint("payment_id", name="uq_token_transactions_payment_id"),
        Index("idx_token_transactions_subscription_id", "subscription_id"),
        Index("idx_token_transactions_created_at", "created_at"),
    )


class RescueRequest(Base):
    """ORM model for rescue_requests table."""

    __tablename__ = "rescue_requests"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    subscription_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("secours_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    request_description: Mapped[str] = mapped_column(Text, nullable=False)
    rescue_value_fcfa: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tokens_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    subscription: Mapped[SecoursSubscription] = relationship(
        back_populates="rescue_requests", lazy="joined"
    )

    __table_args__ = (
        CheckConstraint("rescue_value_fcfa > 0", name="ck_rescue_value_positive"),
        Index("idx_rescue_requests_subscription_id", "subscription_id"),
        Index("idx_rescue_requests_created_at", "created_at"),
    )


class SecoursTokenPolicy(Base):
    """
    ORM model for secours_token_policies table.

    Server-side pricing and bounds per subscription type.
    """

    __tablename__ = "secours_token_policies"

    subscription_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    token_value_fcfa: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    min_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    max_tokens: Mapped[int] = mapped_column(Integer, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("token_value_fcfa > 0", name="ck_policy_token_value_positive"),
        CheckConstraint(
            "min_tokens > 0 AND max_tokens >= min_tokens", name="ck_policy_token_bounds"
        ),
    )


class Agent(Base):
    """ORM model for agents table."""

    __tablename__ = "agents"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    agent_type: Mapped[str] = mapped_column(String(20), nullable=False, default="individual")
    total_commissions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    commissions_withdrawn: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    commissions_pending: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("commissions_pending >= 0", name="ck_agent_pending_non_negative"),
        CheckConstraint("commissions_withdrawn >= 0", name="ck_agent_withdrawn_non_negative"),
        CheckConstraint(
            "commissions_withdrawn + commissions_pending <= total_commissions",
            name="ck_agent_commission_ledger",
        ),
    )


class Referral(Base):
    """ORM model for referrals table."""

    __tablename__ = "referrals"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    agent_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    referred_user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    commission_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    commission_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("commission_amount >= 0", name="ck_referral_commission_non_negative"),
        Index("idx_referrals_agent_id", "agent_id"),
    )


class Sector(Base):
    """ORM model for sectors table (discount directory)."""

    __tablename__ = "sectors"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class Merchant(Base):
    """ORM model for merchants table (discount directory)."""

    __tablename__ = "merchants"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sector_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("sectors.id", ondelete="RESTRICT"), nullable=False
    )
    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    contact_phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    contact_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    website: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    sector: Mapped[Sector] = relationship(lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "discount_percentage >= 0 AND discount_percentage <= 100",
            name="ck_merchant_discount_range",
        ),
        Index("idx_merchants_sector_id", "sector_id"),
    )


class RevokedToken(Base):
    """
    ORM model for revoked_tokens table.

    Tracks signed-out JWTs by SHA-256 hash (never the token itself).
    Rows can be deleted once the original token expires.
    """

    __tablename__ = "revoked_tokens"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    revoked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    token_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        Index("idx_revoked_tokens_user_id", "user_id"),
        Index("idx_revoked_tokens_expires_at", "token_expires_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<RevokedToken(hash={self.token_hash[:16]}..., "
            f"user_id={self.user_id}, reason={self.reason})>"
        )
