"""
GDPR Compliance Service

Provides the consent audit trail (Article 7) and data retention enforcement.
All functions are async and accept an injected AsyncSession, except the
background recorder which opens its own.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import AsyncSessionLocal
from app.models.consent_record import ConsentRecord
from app.models.page_view import PageView

logger = logging.getLogger(__name__)


async def record_consent(
    visitor_id: str,
    action: str,
    marketing_granted: bool,
    policy_version: str,
    ip_address: str | None,
    user_agent: str | None,
    db: AsyncSession,
) -> ConsentRecord:
    """
    Insert a new consent record for the visitor (GDPR Article 7).

    Every explicit decision is recorded as a timestamped fact; duplicates
    are intentional to preserve the full audit trail.
    """
    record = ConsentRecord(
        visitor_id=visitor_id,
        action=action,
        marketing_granted=marketing_granted,
        policy_version=policy_version,
        consented_at=datetime.now(timezone.utc),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    logger.info(
        "Consent recorded: visitor=%s action=%s marketing=%s version=%s",
        visitor_id,
        action,
        marketing_granted,
        policy_version,
    )
    return record


async def record_consent_in_background(
    visitor_id: str,
    action: str,
    marketing_granted: bool,
    policy_version: str,
    ip_address: str | None,
    user_agent: str | None,
) -> None:
    """
    Background-task variant of record_consent with its own DB session.

    The visitor's decision is already persisted in consent storage, so an
    audit write failure is logged and never surfaced.
    """
    async with AsyncSessionLocal() as db:
        try:
            await record_consent(visitor_id, action, marketing_granted, policy_version, ip_address, user_agent, db)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Consent audit write failed for visitor=%s: %s", visitor_id, exc)


async def get_consent_history(
    visitor_id: str,
    db: AsyncSession,
) -> list[ConsentRecord]:
    """Return all consent records for the visitor, newest first."""
    result = await db.execute(
        select(ConsentRecord)
        .where(ConsentRecord.visitor_id == visitor_id)
        .order_by(ConsentRecord.consented_at.desc())
    )
    return list(result.scalars().all())


async def enforce_data_retention(
    retention_days: int,
    db: AsyncSession,
) -> int:
    """
    Delete PageView rows older than retention_days using a single
    Core-level DELETE statement.

    Returns the count of deleted rows.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    result = await db.execute(delete(PageView).where(PageView.created_at < cutoff))
    await db.commit()
    deleted_count = result.rowcount
    logger.info(
        "data_retention: deleted %d PageView rows older than %s (%d days)",
        deleted_count,
        cutoff.isoformat(),
        retention_days,
    )
    return deleted_count
