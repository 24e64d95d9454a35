"""
Metrics Collection with Prometheus.

Exposes quota and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Histogram, Info

from fashionai_quota.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    GENERATION_TYPE = "generation_type"
    SERVICE = "service"
    STRATEGY = "strategy"
    FEATURE = "feature"
    ERROR_TYPE = "error_type"


class QuotaMetrics:
    """
    Centralized metrics for the FashionAI quota core.

    Covers:
    - HTTP requests (rate, duration)
    - Credit deductions and refunds (by type, outcome)
    - API key selections (by service, strategy, outcome)
    - Rate limiter decisions and cache lookups
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "quota_service",
            "Service information",
        )
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
            "quota_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "quota_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Credit Ledger Metrics
        # ====================================================================
        self.credit_deductions_total = Counter(
            "quota_credit_deductions_total",
            "Credit deduction attempts",
            [MetricLabels.GENERATION_TYPE, "success", MetricLabels.ERROR_TYPE],
        )

        self.credit_refunds_total = Counter(
            "quota_credit_refunds_total",
            "Credit refunds after failed generations",
            [MetricLabels.GENERATION_TYPE, "success"],
        )

        self.credit_resets_total = Counter(
            "quota_credit_resets_total",
            "Daily credit resets applied on access",
        )

        # ====================================================================
        # API Key Pool Metrics
        # ====================================================================
        self.api_key_selections_total = Counter(
            "quota_api_key_selections_total",
            "API key selection attempts",
            [MetricLabels.SERVICE, MetricLabels.STRATEGY, "outcome"],
        )

        # ====================================================================
        # Rate Limiter / Cache Metrics
        # ====================================================================
        self.rate_limit_decisions_total = Counter(
            "quota_rate_limit_decisions_total",
            "Rate limiter admission decisions",
            [MetricLabels.FEATURE, "allowed"],
        )

        self.cache_lookups_total = Counter(
            "quota_cache_lookups_total",
            "Response cache lookups",
            ["result"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "quota_errors_total",
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

    def record_deduction(
        self, generation_type: str, success: bool, error_type: str | None = None
    ) -> None:
        """Record a credit deduction attempt."""
        self.credit_deductions_total.labels(
            generation_type=generation_type,
            success=str(success),
            error_type=error_type or "none",
        ).inc()

    def record_refund(self, generation_type: str, success: bool) -> None:
        """Record a credit refund attempt."""
        self.credit_refunds_total.labels(
            generation_type=generation_type, success=str(success)
        ).inc()

    def record_key_selection(self, service: str, strategy: str, selected: bool) -> None:
        """Record an API key selection attempt."""
        self.api_key_selections_total.labels(
            service=service,
            strategy=strategy,
            outcome="selected" if selected else "exhausted",
        ).inc()

    def record_rate_limit(self, feature: str, allowed: bool) -> None:
        """Record a rate limiter decision."""
        self.rate_limit_decisions_total.labels(feature=feature, allowed=str(allowed)).inc()

    def record_cache_lookup(self, hit: bool) -> None:
        """Record a cache hit or miss."""
        self.cache_lookups_total.labels(result="hit" if hit else "miss").inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = QuotaMetrics()
