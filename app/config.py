"""
Application Configuration - Pydantic Settings for type-safe config.

All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
Provider credentials come from the environment only; defaults are empty.
"""

import sys
from decimal import Decimal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Elverra Platform API"
    api_version: str = "0.1.0"
    api_description: str = "Memberships, payments, Ô Secours tokens and agent referrals"

    # Auth - user session tokens (generate with: openssl rand -hex 32)
    jwt_secret: str = ""
    jwt_expire_hours: int = 24

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "elverra-platform-api"

    # Business constants (FCFA)
    registration_fee: Decimal = Decimal("10000")
    referral_commission_rate: Decimal = Decimal("0.10")
    public_base_url: str = "http://localhost:5173"
    api_base_url: str = "http://localhost:8000"
    generated_email_domain: str = "club66.org"
    default_currency: str = "XOF"

    # Payments
    payments_sandbox: bool = False
    provider_timeout_seconds: float = 30.0

    # Payment Provider - Orange Money
    orange_money_base_url: str = "https://api.orange.com/orange-money-webpay/dev/v1"
    orange_money_oauth_url: str = "https://api.orange.com/oauth/v3/token"
    orange_money_client_id: str = ""
    orange_money_client_secret: str = ""
    orange_money_merchant_key: str = ""
    orange_money_merchant_login: str = ""
    orange_money_merchant_account: str = ""
    orange_money_merchant_code: str = ""
    orange_money_merchant_name: str = "ELVERRA GLOBAL"
    orange_money_webhook_secret: str = ""

    # Payment Provider - SAMA Money
    sama_money_base_url: str = "https://smarchandamatest.sama.money/V1/"
    sama_money_merchant_code: str = ""
    sama_money_user_id: str = ""
    sama_money_public_key: str = ""
    sama_money_transaction_key: str = ""
    sama_money_webhook_secret: str = ""

    # Payment Provider - Wave
    wave_base_url: str = "https://api.wave.com/v1"
    wave_api_key: str = ""
    wave_webhook_secret: str = ""
    wave_webhook_tolerance_seconds: int = 300

    # Payment Provider - Moov Money
    moov_base_url: str = "https://api.moov-africa.com/v1"
    moov_api_key: str = ""
    moov_merchant_id: str = ""
    moov_webhook_secret: str = ""

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)

    # Bank transfer instructions
    bank_account_name: str = "Elverra Global"
    bank_account_number: str = ""
    bank_name: str = ""
    bank_swift_code: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if len(self.jwt_secret) < 32:
            errors.append("JWT_SECRET must be at least 32 characters")

        if not Decimal("0") <= self.referral_commission_rate <= Decimal("1"):
            errors.append("REFERRAL_COMMISSION_RATE must be between 0 and 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
