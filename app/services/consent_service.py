"""
Consent Service

ConsentManager is the explicit consent context injected into request
handlers. It exposes the only entry points that mutate consent
(accept_all, reject_all, update_consent) plus the preferences dialog state
(open_preferences, close_preferences), and notifies subscribers whenever the
decision changes.

Consent lifecycle:
    Unset -> Decided(marketing)      via a mutation entry point
    Decided -> Decided               always (preferences can be reopened)
    Decided -> Unset                 via policy version change or clear()
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Depends, Request, Response

from app.config import settings
from app.schemas.consent import (
    DEFAULT_CONSENT_STATE,
    FULL_CONSENT_STATE,
    ConsentCategory,
    ConsentState,
)
from app.services.consent_signals import CommandQueueSink, ConsentSignalMapper
from app.services.consent_store import ConsentStore
from app.utils.metrics import record_consent_decision
from app.utils.storage import InMemoryBackend, SessionBackend

logger = logging.getLogger(__name__)

PREFERENCES_OPEN_KEY = "consent-preferences-open"

ConsentListener = Callable[[ConsentState], Any]
DecisionRecorder = Callable[[str, ConsentState], Awaitable[None] | None]


class ConsentManager:
    """Per-visitor consent context backed by a ConsentStore."""

    def __init__(
        self,
        store: ConsentStore,
        mapper: ConsentSignalMapper | None = None,
        enabled: bool = settings.consent_enabled,
        default_consent: ConsentState = FULL_CONSENT_STATE,
        on_decision: DecisionRecorder | None = None,
    ):
        self.store = store
        self.mapper = mapper or ConsentSignalMapper()
        self.is_enabled = enabled
        self.default_consent = default_consent
        self.on_decision = on_decision

        self.consent: ConsentState = DEFAULT_CONSENT_STATE
        self.has_consented = False
        self.is_preferences_open = False
        self.is_initialized = False
        self._listeners: list[ConsentListener] = []

    # ── Initialization ────────────────────────────────────────────────────────

    async def initialize(self) -> "ConsentManager":
        """Restore the stored decision, or apply the default when consent is disabled."""
        if not self.is_enabled:
            self.consent = self.default_consent
            self.has_consented = True
        else:
            envelope = await self.store.load()
            if envelope:
                self.consent = envelope.state
                self.has_consented = True
            else:
                self.consent = DEFAULT_CONSENT_STATE
                self.has_consented = False

        self.is_preferences_open = (await self.store.session.get(PREFERENCES_OPEN_KEY)) == "1"
        self.is_initialized = True
        self.mapper.update_signals(self.consent)
        return self

    @property
    def show_banner(self) -> bool:
        return self.is_enabled and self.is_initialized and not self.has_consented

    # ── Change notification ───────────────────────────────────────────────────

    def subscribe(self, listener: ConsentListener) -> Callable[[], None]:
        """Register a listener called with the new state after every decision."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, state: ConsentState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.warning(f"Consent listener {listener!r} raised: {exc}")

    # ── Mutation entry points ─────────────────────────────────────────────────

    async def accept_all(self) -> ConsentState:
        return await self._apply(FULL_CONSENT_STATE, "accept_all")

    async def reject_all(self) -> ConsentState:
        return await self._apply(DEFAULT_CONSENT_STATE, "reject_all")

    async def update_consent(self, category: ConsentCategory | str, value: bool) -> ConsentState:
        """Toggle a single category. ``necessary`` cannot be changed."""
        category = ConsentCategory(category)
        if category is ConsentCategory.NECESSARY:
            logger.info("Ignoring attempt to change necessary consent")
            return self.consent

        new_state = self.consent.model_copy(update={category.value: value})
        return await self._apply(new_state, f"update_{category.value}")

    async def open_preferences(self) -> None:
        await self.store.session.set(PREFERENCES_OPEN_KEY, "1")
        self.is_preferences_open = True

    async def close_preferences(self) -> None:
        await self.store.session.delete(PREFERENCES_OPEN_KEY)
        self.is_preferences_open = False

    async def clear(self) -> None:
        """Forget the decision; the banner shows again."""
        await self.store.clear()
        self.consent = DEFAULT_CONSENT_STATE
        self.has_consented = False
        self.mapper.update_signals(self.consent)
        self._notify(self.consent)

    async def _apply(self, new_state: ConsentState, action: str) -> ConsentState:
        # Save first: on StorageError the visible state stays unchanged
        await self.store.save(new_state)

        self.consent = new_state
        self.has_consented = True
        self.mapper.update_signals(new_state)
        self._notify(new_state)
        record_consent_decision(action)
        logger.info(f"Consent decision: {action} (marketing={new_state.marketing})")

        if self.on_decision is not None:
            result = self.on_decision(action, new_state)
            if inspect.isawaitable(result):
                await result
        return new_state


# ── Consent cookie ────────────────────────────────────────────────────────────


def consent_cookie_value(state: ConsentState) -> str:
    return "full" if state.marketing else "necessary"


def set_consent_cookie(response: Response, state: ConsentState) -> None:
    """Coarse server-readable marker; durable only when marketing is granted."""
    response.set_cookie(
        key=settings.consent_cookie_name,
        value=consent_cookie_value(state),
        max_age=settings.consent_expiration_days * 24 * 60 * 60 if state.marketing else None,
        path="/",
        samesite="lax",
    )


def delete_consent_cookie(response: Response) -> None:
    response.delete_cookie(settings.consent_cookie_name, path="/")


def read_consent_cookie(request: Request) -> str | None:
    value = request.cookies.get(settings.consent_cookie_name)
    return value if value in ("full", "necessary") else None


# ── FastAPI dependencies ──────────────────────────────────────────────────────


def get_visitor_id(request: Request) -> str:
    """Visitor id assigned by VisitorMiddleware."""
    return request.state.visitor_id


async def get_consent_store(request: Request, visitor_id: str = Depends(get_visitor_id)) -> ConsentStore:
    """FastAPI dependency for the current visitor's ConsentStore."""
    durable = getattr(request.app.state, "consent_backend", None)
    if durable is None:
        # Startup has not run (e.g. TestClient used without a context manager)
        durable = request.app.state.consent_backend = InMemoryBackend()
    return ConsentStore(
        durable=durable,
        session=SessionBackend(request.session),
        durable_key=f"{settings.consent_storage_key}:{visitor_id}",
    )


async def get_consent_manager(store: ConsentStore = Depends(get_consent_store)) -> ConsentManager:
    """FastAPI dependency for an initialized ConsentManager."""
    manager = ConsentManager(store, mapper=ConsentSignalMapper(sink=CommandQueueSink()))
    return await manager.initialize()
