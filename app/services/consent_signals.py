"""
Consent Signal Mapper

Translates the visitor's consent state into Google Consent Mode v2 signals
for client-loaded tag scripts, and pushes updates through a ConsentSignalSink.

Mapping:
- analytics_storage: always granted (UTMs are necessary for personalization)
- ad_storage, ad_user_data, ad_personalization: granted iff marketing consent
"""

import json
import logging
from typing import Any, Protocol

from app.config import settings
from app.schemas.consent import ConsentState

logger = logging.getLogger(__name__)

GRANTED = "granted"
DENIED = "denied"


class ConsentSignalSink(Protocol):
    """Port to the external tag script's command queue."""

    @property
    def is_loaded(self) -> bool: ...

    def push(self, *command: Any) -> None: ...


class NullSignalSink:
    """Sink used when the tag script has not loaded: every push is dropped."""

    is_loaded = False

    def push(self, *command: Any) -> None:
        return None


class CommandQueueSink:
    """
    Collects tag commands for the page to replay into ``dataLayer``.

    The queued commands are returned with the consent status response.
    """

    is_loaded = True

    def __init__(self) -> None:
        self.commands: list[list[Any]] = []

    def push(self, *command: Any) -> None:
        self.commands.append(list(command))


class ConsentSignalMapper:
    def __init__(
        self,
        sink: ConsentSignalSink | None = None,
        wait_for_update_ms: int = settings.consent_wait_for_update_ms,
    ):
        self.sink = sink or NullSignalSink()
        self.wait_for_update_ms = wait_for_update_ms

    def default_signals(self) -> dict[str, Any]:
        """All signals denied; the tag waits briefly for a restored decision."""
        return {
            "ad_storage": DENIED,
            "analytics_storage": DENIED,
            "ad_user_data": DENIED,
            "ad_personalization": DENIED,
            "wait_for_update": self.wait_for_update_ms,
        }

    @staticmethod
    def signals_for(state: ConsentState) -> dict[str, str]:
        ads = GRANTED if state.marketing else DENIED
        return {
            "analytics_storage": GRANTED,
            "ad_storage": ads,
            "ad_user_data": ads,
            "ad_personalization": ads,
        }

    def update_signals(self, state: ConsentState) -> dict[str, str]:
        """
        Push a consent update to the tag script.

        No-op when the script has not loaded. Never raises.
        """
        params = self.signals_for(state)
        if not self.sink.is_loaded:
            return params

        try:
            self.sink.push("consent", "update", params)
        except Exception as e:
            logger.warning(f"Failed to push consent update to tag script: {e}")
        return params

    def bootstrap_script(self, google_ads_id: str | None = None) -> str:
        """Inline script that arms gtag with the default-denied state before it loads."""
        lines = [
            "window.dataLayer = window.dataLayer || [];",
            "function gtag(){dataLayer.push(arguments);}",
            f"gtag('consent', 'default', {json.dumps(self.default_signals())});",
        ]
        if google_ads_id:
            lines.append("gtag('js', new Date());")
            lines.append(f"gtag('config', {json.dumps(google_ads_id)});")
        return "\n".join(lines) + "\n"
