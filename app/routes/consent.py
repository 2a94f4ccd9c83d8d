"""
Consent Routes

Endpoints backing the cookie banner and the preferences dialog. Every
mutation persists the decision, refreshes the ``consent`` cookie, updates
the session attribution (click identifiers are added on grant and purged
on withdrawal) and appends an audit record in the background.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.middleware.logging import get_client_ip
from app.schemas.consent import (
    ConsentCategory,
    ConsentHistoryEntry,
    ConsentState,
    ConsentStatusResponse,
    ConsentUpdate,
)
from app.services.attribution_service import AttributionCapture, AttributionSession, page_context
from app.services.consent_service import (
    ConsentManager,
    delete_consent_cookie,
    get_consent_manager,
    get_visitor_id,
    set_consent_cookie,
)
from app.services.consent_signals import ConsentSignalMapper
from app.services.gdpr_service import get_consent_history, record_consent_in_background

router = APIRouter(prefix="/consent", tags=["Consent"])

logger = logging.getLogger(__name__)


def build_status(manager: ConsentManager) -> ConsentStatusResponse:
    sink = manager.mapper.sink
    return ConsentStatusResponse(
        consent=manager.consent,
        has_consented=manager.has_consented,
        show_banner=manager.show_banner,
        is_enabled=manager.is_enabled,
        is_preferences_open=manager.is_preferences_open,
        version=manager.store.version,
        default_signals=manager.mapper.default_signals(),
        signals=ConsentSignalMapper.signals_for(manager.consent),
        commands=getattr(sink, "commands", []),
    )


def bind_side_effects(manager: ConsentManager, request: Request, background_tasks: BackgroundTasks) -> None:
    """Wire attribution and audit reactions to the manager's decisions."""
    attribution = AttributionSession(request.session)

    def sync_click_ids(state: ConsentState) -> None:
        if state.marketing:
            attribution.add_click_ids(AttributionCapture(page_context(request)))
        else:
            attribution.remove_click_ids()

    def audit(action: str, state: ConsentState) -> None:
        background_tasks.add_task(
            record_consent_in_background,
            visitor_id=request.state.visitor_id,
            action=action,
            marketing_granted=state.marketing,
            policy_version=manager.store.version,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )

    manager.subscribe(sync_click_ids)
    manager.on_decision = audit


@router.get("", response_model=ConsentStatusResponse)
async def get_consent_status(manager: ConsentManager = Depends(get_consent_manager)):
    """Current decision, banner visibility and the consent-mode signals to apply."""
    return build_status(manager)


@router.post("/accept-all", response_model=ConsentStatusResponse)
async def accept_all(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    manager: ConsentManager = Depends(get_consent_manager),
):
    bind_side_effects(manager, request, background_tasks)
    state = await manager.accept_all()
    set_consent_cookie(response, state)
    return build_status(manager)


@router.post("/reject-all", response_model=ConsentStatusResponse)
async def reject_all(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    manager: ConsentManager = Depends(get_consent_manager),
):
    bind_side_effects(manager, request, background_tasks)
    state = await manager.reject_all()
    set_consent_cookie(response, state)
    return build_status(manager)


@router.put("/{category}", response_model=ConsentStatusResponse)
async def update_consent(
    category: ConsentCategory,
    update: ConsentUpdate,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    manager: ConsentManager = Depends(get_consent_manager),
):
    """Toggle one category. Changing ``necessary`` is accepted and ignored."""
    bind_side_effects(manager, request, background_tasks)
    state = await manager.update_consent(category, update.granted)
    if manager.has_consented:
        set_consent_cookie(response, state)
    return build_status(manager)


@router.post("/preferences/open", response_model=ConsentStatusResponse)
async def open_preferences(manager: ConsentManager = Depends(get_consent_manager)):
    await manager.open_preferences()
    return build_status(manager)


@router.post("/preferences/close", response_model=ConsentStatusResponse)
async def close_preferences(manager: ConsentManager = Depends(get_consent_manager)):
    await manager.close_preferences()
    return build_status(manager)


@router.delete("", response_model=ConsentStatusResponse)
async def withdraw_consent(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    manager: ConsentManager = Depends(get_consent_manager),
):
    """Forget the decision; the banner shows again and click identifiers are purged."""
    bind_side_effects(manager, request, background_tasks)
    await manager.clear()
    manager.on_decision("withdraw", manager.consent)
    delete_consent_cookie(response)
    return build_status(manager)


@router.get("/history", response_model=list[ConsentHistoryEntry])
async def consent_history(
    visitor_id: str = Depends(get_visitor_id),
    db: AsyncSession = Depends(get_db),
):
    """Audit trail of this visitor's decisions, newest first."""
    return await get_consent_history(visitor_id, db)


@router.get("/bootstrap.js", include_in_schema=False)
async def bootstrap_script():
    """Default-denied consent-mode bootstrap; must run before any tag loads."""
    script = ConsentSignalMapper().bootstrap_script(settings.google_ads_id)
    return Response(
        content=script,
        media_type="application/javascript",
        headers={"Cache-Control": "public, max-age=300"},
    )
