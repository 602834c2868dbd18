"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MONEY = sa.Numeric(14, 2)


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")
    )


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Users and profiles
    # ========================================================================
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("user_type", sa.String(20), nullable=False, server_default="member"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("role IN ('member', 'admin')", name="ck_users_role"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "profiles",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("country", sa.String(100), nullable=True, server_default="Mali"),
        sa.Column("profile_image_url", sa.String(1000), nullable=True),
        _created_at(),
        _updated_at(),
    )

    # ========================================================================
    # Memberships
    # ========================================================================
    op.create_table(
        "memberships",
        _uuid_pk(),
        sa.Column(
            "user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("member_id", sa.String(32), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("physical_card_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("tier IN ('essential', 'premium', 'elite')", name="ck_memberships_tier"),
        sa.UniqueConstraint("member_id", name="uq_memberships_member_id"),
    )
    op.create_index("idx_memberships_user_id", "memberships", ["user_id"])
    op.create_index(
        "uq_memberships_one_active",
        "memberships",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_active IS true"),
    )

    # ========================================================================
    # Payments
    # ========================================================================
    op.create_table(
        "payment_gateways",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("fee_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("fee_fixed", MONEY, nullable=False, server_default="0"),
        sa.Column("supported_currencies", sa.ARRAY(sa.String(3)), nullable=False, server_default="{}"),
        sa.Column("description", sa.String(500), nullable=False, server_default=""),
        sa.Column("icon", sa.String(16), nullable=False, server_default=""),
        _updated_at(),
        sa.CheckConstraint(
            "fee_percentage >= 0 AND fee_percentage <= 100", name="ck_gateway_fee_percentage"
        ),
        sa.CheckConstraint("fee_fixed >= 0", name="ck_gateway_fee_fixed"),
    )

    op.create_table(
        "payments",
        _uuid_pk(),
        sa.Column(
            "user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("fees", MONEY, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("transaction_reference", sa.String(64), nullable=False),
        sa.Column("provider_transaction_id", sa.String(255), nullable=True),
        sa.Column("payment_url", sa.String(1000), nullable=True),
        sa.Column("gateway_response", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("membership_tier", sa.String(20), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_payment_status"),
        sa.UniqueConstraint("transaction_reference", name="uq_payments_transaction_reference"),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_payment_idempotency"),
    )
    op.create_index("idx_payments_user_id", "payments", ["user_id"])
    op.create_index("idx_payments_status", "payments", ["status"])
    op.create_index(
        "idx_payments_provider_txn",
        "payments",
        ["provider_transaction_id"],
        postgresql_where=sa.text("provider_transaction_id IS NOT NULL"),
    )

    # ========================================================================
    # O Secours
    # ========================================================================
    op.create_table(
        "secours_subscriptions",
        _uuid_pk(),
        sa.Column(
            "user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("subscription_type", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("token_balance", sa.BigInteger(), nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("token_balance >= 0", name="ck_secours_balance_non_negative"),
    )
    op.create_index("idx_secours_subscriptions_user_id", "secours_subscriptions", ["user_id"])
    op.create_index(
        "uq_secours_one_active_per_type",
        "secours_subscriptions",
        ["user_id", "subscription_type"],
        unique=True,
        postgresql_where=sa.text("is_active IS true"),
    )

    op.create_table(
        "token_transactions",
        _uuid_pk(),
        sa.Column(
            "subscription_id",
            UUID(as_uuid=True),
            sa.ForeignKey("secours_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_amount", sa.Integer(), nullable=False),
        sa.Column("token_value_fcfa", MONEY, nullable=False),
        sa.Column("total_amount_fcfa", MONEY, nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column(
            "payment_id", UUID(as_uuid=True), sa.ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
        ),
        _created_at(),
        sa.CheckConstraint("token_amount > 0", name="ck_token_amount_positive"),
        sa.UniqueConstraint("payment_id", name="uq_token_transactions_payment_id"),
    )
    op.create_index("idx_token_transactions_subscription_id", "token_transactions", ["subscription_id"])
    op.create_index("idx_token_transactions_created_at", "token_transactions", ["created_at"])

    op.create_table(
        "rescue_requests",
        _uuid_pk(),
        sa.Column(
            "subscription_id",
            UUID(as_uuid=True),
            sa.ForeignKey("secours_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("request_description", sa.Text(), nullable=False),
        sa.Column("rescue_value_fcfa", MONEY, nullable=False),
        sa.Column("tokens_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("rescue_value_fcfa > 0", name="ck_rescue_value_positive"),
    )
    op.create_index("idx_rescue_requests_subscription_id", "rescue_requests", ["subscription_id"])
    op.create_index("idx_rescue_requests_created_at", "rescue_requests", ["created_at"])

    op.create_table(
        "secours_token_policies",
        sa.Column("subscription_type", sa.String(20), primary_key=True),
        sa.Column("token_value_fcfa", MONEY, nullable=False),
        sa.Column("min_tokens", sa.Integer(), nullable=False),
        sa.Column("max_tokens", sa.Integer(), nullable=False),
        _updated_at(),
        sa.CheckConstraint("token_value_fcfa > 0", name="ck_policy_token_value_positive"),
        sa.CheckConstraint("min_tokens > 0 AND max_tokens >= min_tokens", name="ck_policy_token_bounds"),
    )

    # ========================================================================
    # Agents and referrals
    # ========================================================================
    op.create_table(
        "agents",
        _uuid_pk(),
        sa.Column(
            "user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("referral_code", sa.String(32), nullable=False),
        sa.Column("agent_type", sa.String(20), nullable=False, server_default="individual"),
        sa.Column("total_commissions", MONEY, nullable=False, server_default="0"),
        sa.Column("commissions_withdrawn", MONEY, nullable=False, server_default="0"),
        sa.Column("commissions_pending", MONEY, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("commissions_pending >= 0", name="ck_agent_pending_non_negative"),
        sa.CheckConstraint("commissions_withdrawn >= 0", name="ck_agent_withdrawn_non_negative"),
        sa.CheckConstraint(
            "commissions_withdrawn + commissions_pending <= total_commissions",
            name="ck_agent_commission_ledger",
        ),
        sa.UniqueConstraint("user_id", name="uq_agents_user_id"),
        sa.UniqueConstraint("referral_code", name="uq_agents_referral_code"),
    )

    op.create_table(
        "referrals",
        _uuid_pk(),
        sa.Column(
            "agent_id", UUID(as_uuid=True), sa.ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "referred_user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("commission_amount", MONEY, nullable=False),
        sa.Column("commission_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.CheckConstraint("commission_amount >= 0", name="ck_referral_commission_non_negative"),
        sa.UniqueConstraint("referred_user_id", name="uq_referrals_referred_user_id"),
    )
    op.create_index("idx_referrals_agent_id", "referrals", ["agent_id"])

    # ========================================================================
    # Discount directory
    # ========================================================================
    op.create_table(
        "sectors",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("name", name="uq_sectors_name"),
    )

    op.create_table(
        "merchants",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "sector_id", UUID(as_uuid=True), sa.ForeignKey("sectors.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("location", sa.String(255), nullable=False, server_default=""),
        sa.Column("contact_phone", sa.String(50), nullable=False, server_default=""),
        sa.Column("contact_email", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("website", sa.String(500), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "discount_percentage >= 0 AND discount_percentage <= 100",
            name="ck_merchant_discount_range",
        ),
    )
    op.create_index("idx_merchants_sector_id", "merchants", ["sector_id"])

    # ========================================================================
    # Session revocation
    # ========================================================================
    op.create_table(
        "revoked_tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_by", sa.String(255), nullable=False),
    )
    op.create_index("idx_revoked_tokens_user_id", "revoked_tokens", ["user_id"])
    op.create_index("idx_revoked_tokens_expires_at", "revoked_tokens", ["token_expires_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("revoked_tokens")
    op.drop_table("merchants")
    op.drop_table("sectors")
    op.drop_table("referrals")
    op.drop_table("agents")
    op.drop_table("secours_token_policies")
    op.drop_table("rescue_requests")
    op.drop_table("token_transactions")
    op.drop_table("secours_subscriptions")
    op.drop_table("payments")
    op.drop_table("payment_gateways")
    op.drop_table("memberships")
    op.drop_table("profiles")
    op.drop_table("users")
