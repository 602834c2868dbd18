"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    GATEWAY = "gateway"
    PAYMENT_TYPE = "payment_type"
    SUBSCRIPTION_TYPE = "subscription_type"
    ERROR_TYPE = "error_type"


class PlatformMetrics:
    """
    Centralized metrics for the Elverra platform API.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Payments (initiations per gateway, status changes, amounts)
    - Registrations and referrals
    - Ô Secours token purchases and rescue requests
    - Security alerts raised by the monitor
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("elverra_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "elverra_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "elverra_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "elverra_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payments_initiated_total = Counter(
            "elverra_payments_initiated_total",
            "Payment initiations by gateway and outcome",
            [MetricLabels.GATEWAY, MetricLabels.PAYMENT_TYPE, "success"],
        )

        self.payment_amount_fcfa = Histogram(
            "elverra_payment_amount_fcfa",
            "Initiated payment amounts in FCFA",
            [MetricLabels.GATEWAY],
            buckets=(500, 1000, 2500, 5000, 10000, 25000, 50000, 100000, 250000, 1000000),
        )

        self.payment_status_changes_total = Counter(
            "elverra_payment_status_changes_total",
            "Payment status transitions applied",
            [MetricLabels.GATEWAY, "status"],
        )

        self.provider_call_duration_seconds = Histogram(
            "elverra_provider_call_duration_seconds",
            "Outbound payment provider call duration in seconds",
            [MetricLabels.GATEWAY],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Membership / Referral Metrics
        # ====================================================================
        self.registrations_total = Counter(
            "elverra_registrations_total",
            "Completed registrations by tier",
            ["tier", "referred"],
        )

        self.referral_commissions_fcfa = Counter(
            "elverra_referral_commissions_fcfa_total",
            "Referral commissions credited to agents, in FCFA",
        )

        self.commission_withdrawals_total = Counter(
            "elverra_commission_withdrawals_total",
            "Agent commission withdrawals",
        )

        # ====================================================================
        # Ô Secours Metrics
        # ====================================================================
        self.tokens_purchased_total = Counter(
            "elverra_secours_tokens_purchased_total",
            "Ô Secours tokens purchased",
            [MetricLabels.SUBSCRIPTION_TYPE],
        )

        self.rescue_requests_total = Counter(
            "elverra_secours_rescue_requests_total",
            "Rescue requests submitted by outcome",
            [MetricLabels.SUBSCRIPTION_TYPE, "accepted"],
        )

        self.security_alerts_total = Counter(
            "elverra_security_alerts_total",
            "Security alerts raised by the activity monitor",
            ["alert_id", "severity"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "elverra_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_payment_initiation(
        self, gateway: str, payment_type: str, success: bool, amount: float
    ) -> None:
        """Record a payment initiation attempt."""
        self.payments_initiated_total.labels(
            gateway=gateway, payment_type=payment_type, success=str(success)
        ).inc()
        if success:
            self.payment_amount_fcfa.labels(gateway=gateway).observe(amount)

    def record_payment_status(self, gateway: str, status: str) -> None:
        """Record an applied payment status transition."""
        self.payment_status_changes_total.labels(gateway=gateway, status=status).inc()

    def record_provider_call(self, gateway: str, duration: float) -> None:
        """Record outbound provider call latency."""
        self.provider_call_duration_seconds.labels(gateway=gateway).observe(duration)

    def record_registration(self, tier: str, referred: bool) -> None:
        """Record a completed registration."""
        self.registrations_total.labels(tier=tier, referred=str(referred)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = PlatformMetrics()

