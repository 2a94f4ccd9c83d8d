"""
Tracking Routes

- GET  /attribution  the visitor's session attribution snapshot
- POST /conversions  dispatch a conversion to every configured platform
- POST /track        first-party page view, fire and forget
"""

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from app.schemas.tracking import ConversionRequest, ConversionResponse, PageViewRequest, UserData
from app.services.attribution_service import AttributionCapture, AttributionSession, page_context
from app.services.consent_service import ConsentManager, get_consent_manager
from app.services.conversion_service import ConversionDispatcher, get_dispatcher, new_event_id
from app.services.page_view_service import record_page_view_in_background

router = APIRouter(tags=["Tracking"])

logger = logging.getLogger(__name__)


@router.get("/attribution")
async def get_attribution(request: Request, manager: ConsentManager = Depends(get_consent_manager)) -> dict[str, Any]:
    """Stored snapshot, or a fresh capture of the calling page when none is stored."""
    capture = AttributionCapture(page_context(request))
    snapshot = AttributionSession(request.session).get_current(capture, include_click_ids=manager.consent.marketing)
    return snapshot.to_dict()


@router.post("/conversions", response_model=ConversionResponse)
async def track_conversion(
    body: ConversionRequest,
    request: Request,
    manager: ConsentManager = Depends(get_consent_manager),
    dispatcher: ConversionDispatcher = Depends(get_dispatcher),
):
    """
    Dispatch a business event to all platforms.

    Per-platform failures are reported in ``results`` and never fail the
    request. Restricted platforms only receive the event with marketing
    consent.
    """
    attribution = AttributionSession(request.session).get()
    if attribution is None:
        attribution = AttributionCapture(page_context(request)).capture_basic()

    event_id = body.event_id or new_event_id()
    results = await dispatcher.track_conversion(
        body.event.value,
        event_id,
        attribution,
        UserData(email=body.email, user_id=body.user_id),
        has_marketing_consent=manager.consent.marketing,
        value=body.value,
        currency=body.currency,
    )
    return ConversionResponse(event_id=event_id, results=results)


@router.post("/track")
async def track_page_view(body: PageViewRequest, request: Request, background_tasks: BackgroundTasks):
    """Record a page view. Tracking must never break the page, so this always answers ok."""
    background_tasks.add_task(
        record_page_view_in_background,
        path=body.path,
        user_agent=request.headers.get("user-agent"),
        user_id=body.user_id,
        attribution=body.attribution,
        referrer=request.headers.get("referer"),
        locale=body.locale,
    )
    return {"ok": True}
