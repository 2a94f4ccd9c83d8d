"""
Page View Service

Records first-party page views. Visitors are counted through a daily
rotating hash of the user agent, so no identifier is stored.
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import AsyncSessionLocal
from app.models.page_view import PageView
from app.schemas.attribution import UTM_FIELDS
from app.utils.hashing import visitor_hash

logger = logging.getLogger(__name__)

UNKNOWN_USER_AGENT = "unknown"


async def record_page_view(
    path: str,
    user_agent: str | None,
    db: AsyncSession,
    user_id: str | None = None,
    attribution: Mapping[str, str] | None = None,
    referrer: str | None = None,
    locale: str = "en",
    today: date | None = None,
) -> PageView:
    """Insert one page view row and return it."""
    attribution = attribution or {}
    day = today or datetime.now(timezone.utc).date()

    view = PageView(
        visitor_hash=visitor_hash(user_agent or UNKNOWN_USER_AGENT, day),
        user_id=user_id or None,
        path=path,
        referrer=referrer or None,
        locale=locale or "en",
        **{name: attribution.get(name) or None for name in UTM_FIELDS},
    )
    db.add(view)
    await db.commit()
    return view


async def record_page_view_in_background(
    path: str,
    user_agent: str | None,
    user_id: str | None = None,
    attribution: Mapping[str, str] | None = None,
    referrer: str | None = None,
    locale: str = "en",
) -> None:
    """Fire-and-forget variant with its own session; failures are only logged."""
    async with AsyncSessionLocal() as db:
        try:
            await record_page_view(
                path,
                user_agent,
                db,
                user_id=user_id,
                attribution=attribution,
                referrer=referrer,
                locale=locale,
            )
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(f"Page view tracking failed for {path}: {exc}")
