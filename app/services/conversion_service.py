"""
Conversion Service

ConversionDispatcher fans a business event out to every registered platform
adapter. Adapters run concurrently, each under its own deadline, so one slow
or failing platform never delays or cancels another. The call always
resolves to a DispatchResult ``{platform name -> bool}``; partial failure is
an ordinary outcome.

Repeated calls with the same event_id send the same dedupe key to each
platform. Overlapping calls for one event_id are not coalesced here; callers
that need exactly-once must deduplicate before dispatching.
"""

import asyncio
import logging
import uuid
from typing import Any

import httpx
from fastapi import Request
from pydantic import ValidationError as PydanticValidationError

from app.config import Settings, settings
from app.exceptions import ConfigurationError
from app.platforms.base import PlatformAdapter
from app.platforms.google_ads import GoogleAdsAdapter
from app.platforms.meta import MetaConversionsAdapter
from app.platforms.registry import PlatformRegistry
from app.platforms.tiktok import TikTokEventsAdapter
from app.schemas.attribution import AttributionSnapshot
from app.schemas.tracking import ConversionEvent, DispatchResult, TrackingEventType, UserData

logger = logging.getLogger(__name__)

# Adapter classes built by build_dispatcher, in dispatch order
DEFAULT_ADAPTERS: tuple[type[PlatformAdapter], ...] = (
    MetaConversionsAdapter,
    GoogleAdsAdapter,
    TikTokEventsAdapter,
)


def new_event_id() -> str:
    return str(uuid.uuid4())


class ConversionDispatcher:
    """Concurrent, consent-gated fan-out of conversions to platform adapters."""

    def __init__(self, registry: PlatformRegistry | None = None, deadline: float = settings.dispatch_deadline_seconds):
        self.registry = registry or PlatformRegistry()
        self.deadline = deadline

    def register(self, adapter: PlatformAdapter) -> None:
        self.registry.register(adapter)

    @property
    def platforms(self) -> list[str]:
        return self.registry.names()

    async def track_conversion(
        self,
        event_name: str,
        event_id: str,
        attribution: AttributionSnapshot | dict[str, Any],
        user_data: UserData | dict[str, Any] | None = None,
        *,
        has_marketing_consent: bool = False,
        value: float | None = None,
        currency: str | None = None,
    ) -> DispatchResult:
        """
        Dispatch one conversion to every registered platform.

        Args:
            event_name: Internal event name (signup, purchase, ...)
            event_id: Dedupe key forwarded verbatim to every platform
            attribution: Snapshot captured for the visitor
            user_data: Raw email/user id; hashed by each adapter
            has_marketing_consent: Gate for restricted platforms
            value: Optional monetary value
            currency: ISO 4217 code, defaults per platform

        Returns:
            Mapping of platform name to delivery outcome. Never raises.
        """
        try:
            event = ConversionEvent(
                event_name=event_name,
                event_id=event_id,
                attribution=attribution,
                user_data=user_data or UserData(),
                value=value,
                currency=currency,
            )
        except PydanticValidationError as e:
            logger.error(
                f"Rejected malformed conversion event {event_name!r}: {e.error_count()} validation error(s)",
                extra={"event_name": event_name},
            )
            return {name: False for name in self.registry.names()}

        return await self.dispatch(event, has_marketing_consent=has_marketing_consent)

    async def dispatch(self, event: ConversionEvent, has_marketing_consent: bool = False) -> DispatchResult:
        adapters = self.registry.all_adapters()
        if not adapters:
            logger.debug("No platform adapters registered; nothing to dispatch")
            return {}

        outcomes = await asyncio.gather(
            *(self._run_adapter(adapter, event, has_marketing_consent) for adapter in adapters),
            return_exceptions=True,
        )

        results: DispatchResult = {}
        for adapter, outcome in zip(adapters, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Adapter {adapter.name} escaped its error handling: {outcome!r}",
                    extra={"platform": adapter.name, "event_name": event.event_name},
                )
                results[adapter.name] = False
            else:
                results[adapter.name] = outcome

        logger.info(
            f"Conversion {event.event_name} ({event.event_id}) dispatched: {results}",
            extra={"event_name": event.event_name},
        )
        return results

    async def _run_adapter(self, adapter: PlatformAdapter, event: ConversionEvent, has_marketing_consent: bool) -> bool:
        try:
            return await asyncio.wait_for(adapter.dispatch(event, has_marketing_consent), timeout=self.deadline)
        except asyncio.TimeoutError:
            logger.error(
                f"Conversion dispatch to {adapter.name} exceeded {self.deadline}s deadline",
                extra={"platform": adapter.name, "event_name": event.event_name},
            )
            return False

    # ── Convenience wrappers ──────────────────────────────────────────────────

    async def track_signup(
        self,
        event_id: str,
        attribution: AttributionSnapshot | dict[str, Any],
        email: str | None = None,
        user_id: str | None = None,
        has_marketing_consent: bool = False,
    ) -> DispatchResult:
        return await self.track_conversion(
            TrackingEventType.SIGNUP.value,
            event_id,
            attribution,
            UserData(email=email, user_id=user_id),
            has_marketing_consent=has_marketing_consent,
        )

    async def track_purchase(
        self,
        event_id: str,
        attribution: AttributionSnapshot | dict[str, Any],
        value: float,
        currency: str,
        email: str | None = None,
        user_id: str | None = None,
        has_marketing_consent: bool = False,
    ) -> DispatchResult:
        return await self.track_conversion(
            TrackingEventType.PURCHASE.value,
            event_id,
            attribution,
            UserData(email=email, user_id=user_id),
            has_marketing_consent=has_marketing_consent,
            value=value,
            currency=currency,
        )


def build_dispatcher(client: httpx.AsyncClient | None = None, config: Settings = settings) -> ConversionDispatcher:
    """Register every platform whose credentials are configured."""
    dispatcher = ConversionDispatcher(deadline=config.dispatch_deadline_seconds)
    for adapter_cls in DEFAULT_ADAPTERS:
        try:
            dispatcher.register(adapter_cls(client=client, timeout=config.dispatch_timeout_seconds))
        except ConfigurationError as e:
            logger.info(f"Platform {e.platform} disabled: missing {', '.join(e.missing)}")
    return dispatcher


def get_dispatcher(request: Request) -> ConversionDispatcher:
    """FastAPI dependency for the application-wide dispatcher."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = build_dispatcher()
        request.app.state.dispatcher = dispatcher
    return dispatcher
