"""
Visitor Identification Middleware

Sets request.state.visitor_id from the first-party ``visitor_id`` cookie,
issuing a fresh random id when the cookie is absent or malformed. The id
keys the visitor's durable consent record and audit trail; it carries no
personal data and is a strictly necessary cookie.
"""

from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastapi import Request
    from starlette.responses import Response

VISITOR_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{8,64}$")


def new_visitor_id() -> str:
    return uuid.uuid4().hex


class VisitorMiddleware(BaseHTTPMiddleware):
    """Attach a stable anonymous visitor id to every request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        visitor_id = request.cookies.get(settings.visitor_cookie_name, "")
        is_new = not VISITOR_ID_PATTERN.match(visitor_id)
        if is_new:
            visitor_id = new_visitor_id()

        request.state.visitor_id = visitor_id
        response = await call_next(request)

        if is_new:
            response.set_cookie(
                key=settings.visitor_cookie_name,
                value=visitor_id,
                max_age=settings.visitor_cookie_max_age,
                path="/",
                httponly=True,
                samesite="lax",
                secure=settings.environment == "production",
            )
        return response
