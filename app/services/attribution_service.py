"""
Attribution Service

Captures visit provenance (UTMs, referrer, landing page, device) from the
incoming request and keeps the snapshot in the visitor's session.

Two capture levels:
- capture_basic(): always allowed. UTMs, via, referrer, landing page, device.
- capture_full(include_click_ids=True): additionally gclid, fbclid, fbc, fbp,
  ttclid. Requires marketing consent; callers decide.
"""

import json
import logging
import re
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError

from app.schemas.attribution import (
    MEANINGFUL_FIELDS,
    RESTRICTED_FIELDS,
    UTM_FIELDS,
    AttributionSnapshot,
    DeviceType,
)
from app.utils.metrics import record_attribution_capture

logger = logging.getLogger(__name__)

SESSION_KEY = "attribution_data"
FBP_COOKIE = "_fbp"

# fb.<subdomainIndex>.<creationTime>.<randomId>
FBP_PATTERN = re.compile(r"^fb\.\d+\.\d+\.[A-Za-z0-9]+$")
FBC_VERSION_PREFIX = "fb.1"

TABLET_PATTERN = re.compile(r"tablet|ipad|playbook|silk", re.IGNORECASE)
MOBILE_PATTERN = re.compile(r"mobile|iphone|ipod|android|blackberry|opera mini|iemobile", re.IGNORECASE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class VisitContext:
    """The parts of an incoming request that attribution reads."""

    query_params: Mapping[str, str] = field(default_factory=dict)
    path: str = "/"
    referrer: str | None = None
    user_agent: str | None = None
    cookies: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "VisitContext":
        return cls(
            query_params=dict(request.query_params),
            path=request.url.path,
            referrer=request.headers.get("referer"),
            user_agent=request.headers.get("user-agent"),
            cookies=dict(request.cookies),
        )

    @classmethod
    def from_url(
        cls,
        url: str,
        referrer: str | None = None,
        user_agent: str | None = None,
        cookies: Mapping[str, str] | None = None,
    ) -> "VisitContext":
        parts = urlsplit(url)
        return cls(
            query_params=dict(parse_qsl(parts.query)),
            path=parts.path or "/",
            referrer=referrer,
            user_agent=user_agent,
            cookies=dict(cookies or {}),
        )


def get_device_type(user_agent: str | None) -> DeviceType:
    """Three-way user-agent heuristic; tablets are checked before phones."""
    if not user_agent:
        return DeviceType.DESKTOP
    if TABLET_PATTERN.search(user_agent):
        return DeviceType.TABLET
    if MOBILE_PATTERN.search(user_agent):
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def generate_fbc(fbclid: str | None, created_at: datetime) -> str | None:
    """Format: fb.1.<creation time in epoch millis>.<fbclid>"""
    if not fbclid:
        return None
    return f"{FBC_VERSION_PREFIX}.{int(created_at.timestamp() * 1000)}.{fbclid}"


def read_fbp_cookie(cookies: Mapping[str, str]) -> str | None:
    """Return the browser id set by the Meta pixel, or None if absent or malformed."""
    value = cookies.get(FBP_COOKIE)
    if not value:
        return None
    value = value.strip()
    if not FBP_PATTERN.match(value):
        logger.debug(f"Ignoring malformed {FBP_COOKIE} cookie")
        return None
    return value


def clean_attribution_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """Drop absent and empty values."""
    return {key: value for key, value in data.items() if value is not None and value != ""}


def has_attribution_data(snapshot: AttributionSnapshot | None) -> bool:
    if snapshot is None:
        return False
    return any(getattr(snapshot, name) is not None for name in MEANINGFUL_FIELDS)


def merge_attribution(existing: AttributionSnapshot, incoming: AttributionSnapshot) -> AttributionSnapshot:
    """Build a new snapshot, preferring non-empty values from ``incoming``."""
    return AttributionSnapshot(**{**existing.to_dict(), **incoming.to_dict()})


def strip_restricted(snapshot: AttributionSnapshot) -> AttributionSnapshot:
    return AttributionSnapshot(**{k: v for k, v in snapshot.to_dict().items() if k not in RESTRICTED_FIELDS})


class AttributionCapture:
    """Extracts an AttributionSnapshot from a VisitContext."""

    def __init__(self, context: VisitContext, clock: Callable[[], datetime] = utcnow):
        self.context = context
        self._clock = clock

    def capture_basic(self) -> AttributionSnapshot:
        """Capture the always-allowed fields. Never reads click identifiers."""
        snapshot = AttributionSnapshot(**self._basic_fields(self._clock()))
        record_attribution_capture("basic")
        return snapshot

    def capture_full(self, include_click_ids: bool = False) -> AttributionSnapshot:
        """
        Capture basic fields plus, only if ``include_click_ids``, the
        consent-restricted click and browser identifiers.
        """
        now = self._clock()
        data = self._basic_fields(now)

        if include_click_ids:
            params = self.context.query_params
            fbclid = params.get("fbclid")
            data.update(
                {
                    "gclid": params.get("gclid"),
                    "fbclid": fbclid,
                    "fbc": generate_fbc(fbclid, now),
                    "fbp": read_fbp_cookie(self.context.cookies),
                    "ttclid": params.get("ttclid"),
                }
            )

        snapshot = AttributionSnapshot(**clean_attribution_data(data))
        record_attribution_capture("full" if include_click_ids else "basic")
        return snapshot

    def _basic_fields(self, now: datetime) -> dict[str, Any]:
        params = self.context.query_params
        data: dict[str, Any] = {name: params.get(name) for name in UTM_FIELDS}
        data.update(
            {
                "via": params.get("via"),
                "referrer": self.context.referrer,
                "landing_page": self.context.path or "/",
                "device_type": get_device_type(self.context.user_agent),
                "user_agent": self.context.user_agent,
                "timestamp": isoformat_z(now),
            }
        )
        return clean_attribution_data(data)


class AttributionSession:
    """Keeps the visitor's attribution snapshot in the session."""

    def __init__(self, session: MutableMapping[str, Any], key: str = SESSION_KEY):
        self._session = session
        self.key = key

    def get(self) -> AttributionSnapshot | None:
        raw = self._session.get(self.key)
        if not raw:
            return None
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
            return AttributionSnapshot.model_validate(data)
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"Dropping unreadable attribution from session: {e}")
            self._session.pop(self.key, None)
            return None

    def save(self, snapshot: AttributionSnapshot) -> AttributionSnapshot:
        """Merge into the stored snapshot and persist the result."""
        existing = self.get()
        merged = merge_attribution(existing, snapshot) if existing else snapshot
        self._write(merged)
        return merged

    def clear(self) -> None:
        self._session.pop(self.key, None)

    def capture_and_persist(self, capture: AttributionCapture, include_click_ids: bool = False) -> AttributionSnapshot:
        """Capture the current visit and persist it when it carries campaign data."""
        captured = capture.capture_full(include_click_ids=include_click_ids)
        if has_attribution_data(captured):
            return self.save(captured)
        return self.get() or captured

    def get_current(self, capture: AttributionCapture, include_click_ids: bool = False) -> AttributionSnapshot:
        stored = self.get()
        if has_attribution_data(stored):
            return stored
        return self.capture_and_persist(capture, include_click_ids=include_click_ids)

    def add_click_ids(self, capture: AttributionCapture) -> AttributionSnapshot:
        """Enrich the stored snapshot after marketing consent is granted."""
        with_ids = capture.capture_full(include_click_ids=True)
        existing = self.get()
        if existing is None:
            self._write(with_ids)
            return with_ids

        click_ids = {k: v for k, v in with_ids.to_dict().items() if k in RESTRICTED_FIELDS}
        merged = AttributionSnapshot(**{**existing.to_dict(), **click_ids})
        self._write(merged)
        return merged

    def remove_click_ids(self) -> None:
        """Purge restricted identifiers after marketing consent is withdrawn."""
        existing = self.get()
        if existing is not None and existing.has_restricted_fields():
            self._write(strip_restricted(existing))

    def _write(self, snapshot: AttributionSnapshot) -> None:
        self._session[self.key] = json.dumps(snapshot.to_dict())


def page_context(request: Request) -> VisitContext:
    """
    Context of the page an API call was made from.

    API requests carry the page URL in the Referer header; the page's own
    referrer is not available at that point.
    """
    page_url = request.headers.get("referer")
    if not page_url:
        return VisitContext.from_request(request)
    return VisitContext.from_url(
        page_url,
        user_agent=request.headers.get("user-agent"),
        cookies=dict(request.cookies),
    )
