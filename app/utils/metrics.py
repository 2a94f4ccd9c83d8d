"""
Prometheus Metrics Module

Provides application metrics using the prometheus_client library.
Metrics are exposed at /metrics endpoint for Prometheus scraping.
"""

import time
from collections.abc import Callable

from prometheus_client import Counter, Histogram, Info
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# =============================================================================
# Application Info
# =============================================================================

APP_INFO = Info("attribution_app", "Attribution service information")


def set_app_info(version: str, environment: str) -> None:
    """Set application info labels."""
    APP_INFO.info({"version": version, "environment": environment})


# =============================================================================
# HTTP Request Metrics
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "attribution_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "attribution_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# =============================================================================
# Consent & Attribution Metrics
# =============================================================================

CONSENT_DECISIONS_TOTAL = Counter(
    "attribution_consent_decisions_total",
    "Consent decisions made by visitors",
    ["action"],  # accept_all, reject_all, update_marketing
)

ATTRIBUTION_CAPTURES_TOTAL = Counter(
    "attribution_captures_total",
    "Attribution snapshots captured",
    ["mode"],  # basic, full
)

# =============================================================================
# Conversion Dispatch Metrics
# =============================================================================

CONVERSION_DISPATCH_TOTAL = Counter(
    "attribution_conversion_dispatch_total",
    "Conversion dispatch outcomes per platform",
    ["platform", "outcome"],  # success, failure, skipped
)

CONVERSION_DISPATCH_DURATION_SECONDS = Histogram(
    "attribution_conversion_dispatch_duration_seconds",
    "Time spent dispatching a conversion to one platform, retries included",
    ["platform"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

CONVERSION_DISPATCH_ATTEMPTS_TOTAL = Counter(
    "attribution_conversion_dispatch_attempts_total",
    "HTTP attempts made against platform APIs",
    ["platform"],
)


# =============================================================================
# Prometheus Metrics Middleware
# =============================================================================


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics for Prometheus.

    Tracks:
    - Request count by method, endpoint, and status code
    - Request duration by method and endpoint
    """

    # Endpoints to exclude from metrics (to avoid noise)
    EXCLUDED_PATHS = {"/metrics", "/health", "/favicon.ico"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = self._normalize_path(path)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            status_code = 500
            raise
        finally:
            duration = time.perf_counter() - start_time
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=endpoint).observe(duration)
            HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()

        return response

    @staticmethod
    def _normalize_path(path: str) -> str:
        """
        Normalize URL path for metrics by replacing dynamic segments.

        Examples:
            /api/v1/consent/marketing -> /api/v1/consent/marketing
            /pricing/123 -> /pricing/{id}
        """
        parts = path.split("/")
        normalized = []

        for part in parts:
            if part.isdigit():
                normalized.append("{id}")
            elif part and len(part) == 36 and "-" in part:
                normalized.append("{uuid}")
            else:
                normalized.append(part)

        return "/".join(normalized)


# =============================================================================
# Helper Functions
# =============================================================================


def record_consent_decision(action: str) -> None:
    """Record a consent decision (accept_all/reject_all/update_marketing)."""
    CONSENT_DECISIONS_TOTAL.labels(action=action).inc()


def record_attribution_capture(mode: str) -> None:
    """Record an attribution capture (basic/full)."""
    ATTRIBUTION_CAPTURES_TOTAL.labels(mode=mode).inc()


def record_dispatch(platform: str, outcome: str, duration: float | None = None) -> None:
    """Record a per-platform dispatch outcome (success/failure/skipped)."""
    CONVERSION_DISPATCH_TOTAL.labels(platform=platform, outcome=outcome).inc()
    if duration is not None:
        CONVERSION_DISPATCH_DURATION_SECONDS.labels(platform=platform).observe(duration)


def record_dispatch_attempt(platform: str) -> None:
    CONVERSION_DISPATCH_ATTEMPTS_TOTAL.labels(platform=platform).inc()
