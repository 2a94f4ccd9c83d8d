"""
Platform Registry

PlatformRegistry: in-process store of the configured platform adapters,
keyed by platform name. Registration order is dispatch order in results.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.platforms.base import PlatformAdapter

logger = logging.getLogger(__name__)


class PlatformRegistry:
    """In-process registry of platform adapters."""

    def __init__(self) -> None:
        self._adapters: dict[str, PlatformAdapter] = {}

    # ── Registration ──────────────────────────────────────────────────────────

    def register(self, adapter: PlatformAdapter) -> None:
        """Register an adapter; a second adapter with the same name replaces the first."""
        if adapter.name in self._adapters:
            logger.warning(f"Replacing registered platform adapter: {adapter.name}")
        self._adapters[adapter.name] = adapter
        logger.info(
            f"Platform registered: {adapter.name} "
            f"(requires marketing consent: {adapter.requires_marketing_consent})"
        )

    def unregister(self, name: str) -> None:
        self._adapters.pop(name, None)

    # ── Lookup ────────────────────────────────────────────────────────────────

    def get(self, name: str) -> PlatformAdapter | None:
        """Return the adapter with the given name, or None if not registered."""
        return self._adapters.get(name)

    def all_adapters(self) -> list[PlatformAdapter]:
        """Return all registered adapters in registration order."""
        return list(self._adapters.values())

    def names(self) -> list[str]:
        return list(self._adapters)

    def is_registered(self, name: str) -> bool:
        return name in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)
