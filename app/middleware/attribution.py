"""
Attribution Capture Middleware

Captures visit provenance on page requests and persists it in the session.
Click identifiers are only read when the ``consent`` cookie says the
visitor granted marketing consent.

Registered in create_app() BEFORE SessionMiddleware (Starlette LIFO means
SessionMiddleware runs first and request.session is available here).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from app.services.attribution_service import AttributionCapture, AttributionSession, VisitContext
from app.services.consent_service import read_consent_cookie

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastapi import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

EXCLUDED_PREFIXES = ("/api", "/metrics", "/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico")


class AttributionMiddleware(BaseHTTPMiddleware):
    """Run attribution capture for GET page requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method == "GET" and not request.url.path.startswith(EXCLUDED_PREFIXES):
            self._capture(request)
        return await call_next(request)

    @staticmethod
    def _capture(request: Request) -> None:
        include_click_ids = read_consent_cookie(request) == "full"
        try:
            capture = AttributionCapture(VisitContext.from_request(request))
            AttributionSession(request.session).capture_and_persist(capture, include_click_ids=include_click_ids)
        except PydanticValidationError as e:
            # A malformed query string must never break the page itself
            logger.warning(f"Attribution capture skipped for {request.url.path}: {e.error_count()} invalid field(s)")
