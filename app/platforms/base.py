"""
Platform Adapter Base Classes

PlatformAdapter: shared capability every advertising platform implements,
``dispatch(event, has_marketing_consent) -> bool``.

Variants:
- RestrictedPlatform: receives click/browser identifiers, so it only sends
  with explicit marketing consent. Without it, dispatch returns False with
  zero network calls.
- ConsentAwarePlatform: always sends; consent denial travels in the payload
  and is modeled by the platform itself.

Adapters never raise from dispatch(): every failure is logged with the
platform name and status and converted to False.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

import httpx

from app.config import settings
from app.exceptions import ConfigurationError, NetworkError
from app.schemas.tracking import ConversionEvent
from app.utils.metrics import record_dispatch, record_dispatch_attempt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay:   Seconds to wait before the second attempt.
        multiplier:   Delay growth per attempt (2 doubles it).
        max_delay:    Upper bound for a single wait.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


def require_credentials(platform: str, **values: str | None) -> None:
    """Raise ConfigurationError naming every missing credential."""
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(platform, missing)


def drop_empty(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None and value != ""}


class PlatformAdapter(ABC):
    """Abstract base class for all conversion platforms."""

    name: str = "platform"
    requires_marketing_consent: bool = False

    # Internal event name -> platform event name; unknown names pass through
    event_names: dict[str, str] = {}

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float = settings.dispatch_timeout_seconds,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.dispatch_max_attempts, base_delay=settings.dispatch_base_delay_seconds
        )
        self.timeout = timeout
        self._sleep = sleep

    # ── Platform-specific hooks ───────────────────────────────────────────────

    @abstractmethod
    def endpoint(self) -> str:
        """URL the conversion is POSTed to."""
        ...

    @abstractmethod
    def build_payload(self, event: ConversionEvent, has_marketing_consent: bool) -> dict[str, Any]:
        """Build the JSON body. Direct identifiers must already be hashed here."""
        ...

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def check_response(self, response: httpx.Response) -> None:  # noqa: B027
        """Override for platforms that report errors inside a 2xx body."""

    # ── Helpers ───────────────────────────────────────────────────────────────

    def map_event_name(self, event_name: str) -> str:
        return self.event_names.get(event_name, event_name)

    @staticmethod
    def page_url(path: str | None) -> str:
        return urljoin(settings.site_url.rstrip("/") + "/", (path or "/").lstrip("/"))

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def dispatch(self, event: ConversionEvent, has_marketing_consent: bool = False) -> bool:
        """Send one conversion. Returns True on delivery, False on skip or failure."""
        if self.requires_marketing_consent and not has_marketing_consent:
            logger.info(
                f"Skipping {self.name}: no marketing consent",
                extra={"platform": self.name, "event_name": event.event_name},
            )
            record_dispatch(self.name, "skipped")
            return False

        start = time.perf_counter()
        try:
            payload = self.build_payload(event, has_marketing_consent)
            attempts = await self._send_with_retry(payload)
        except NetworkError as e:
            logger.error(
                f"Conversion dispatch to {self.name} failed: {e.message}",
                extra={
                    "platform": self.name,
                    "status_code": e.upstream_status,
                    "attempt": e.attempt,
                    "event_name": event.event_name,
                },
            )
            record_dispatch(self.name, "failure", time.perf_counter() - start)
            return False
        except Exception as e:
            logger.error(
                f"Conversion dispatch to {self.name} raised unexpectedly: {e}",
                exc_info=True,
                extra={"platform": self.name, "event_name": event.event_name},
            )
            record_dispatch(self.name, "failure", time.perf_counter() - start)
            return False

        logger.info(
            f"Conversion {event.event_name} delivered to {self.name}",
            extra={"platform": self.name, "attempt": attempts, "event_name": event.event_name},
        )
        record_dispatch(self.name, "success", time.perf_counter() - start)
        return True

    async def _send_with_retry(self, payload: dict[str, Any]) -> int:
        """POST with retries on network errors and 5xx. Returns the attempt count."""
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._post(payload)
                return attempt
            except NetworkError as e:
                e.attempt = attempt
                if not e.retryable or attempt >= self.retry_policy.max_attempts:
                    raise
                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    f"Retrying {self.name} in {delay:.2f}s after attempt {attempt}: {e.message}",
                    extra={"platform": self.name, "status_code": e.upstream_status, "attempt": attempt},
                )
                await self._sleep(delay)

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        record_dispatch_attempt(self.name)
        try:
            if self.client is not None:
                response = await self.client.post(
                    self.endpoint(), json=payload, headers=self.headers(), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.endpoint(), json=payload, headers=self.headers(), timeout=self.timeout
                    )
        except httpx.TimeoutException as e:
            raise NetworkError(self.name, "Request timed out") from e
        except httpx.RequestError as e:
            raise NetworkError(self.name, f"Request error: {str(e)}") from e

        status_code = response.status_code
        if not 200 <= status_code < 300:
            raise NetworkError(
                self.name,
                f"HTTP {status_code}: {response.text[:200]}",
                status_code=status_code,
                retryable=status_code >= 500,
            )

        self.check_response(response)
        return response


class RestrictedPlatform(PlatformAdapter):
    """Platform that requires explicit marketing consent."""

    requires_marketing_consent = True


class ConsentAwarePlatform(PlatformAdapter):
    """Platform that is always called and models consent denial itself."""

    requires_marketing_consent = False
