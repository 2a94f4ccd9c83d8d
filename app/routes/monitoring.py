"""
Monitoring Routes

Provides health check endpoints and Prometheus metrics for observability.
"""

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.utils.metrics import set_app_info
from app.utils.storage import InMemoryBackend, RedisBackend

router = APIRouter(tags=["Monitoring"])

# Application start time for uptime calculation
APP_START_TIME = time.time()

set_app_info(version=settings.app_version, environment=settings.environment)


class HealthStatus(BaseModel):
    """Health check response model."""

    status: str
    timestamp: str
    version: str
    uptime_seconds: float


class ReadinessStatus(BaseModel):
    """Readiness check response model."""

    status: str
    timestamp: str
    platforms: list[str]
    checks: dict[str, dict[str, Any]]


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """
    Liveness probe endpoint.

    This endpoint should be fast and not depend on external services.
    """
    return HealthStatus(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
        uptime_seconds=round(time.time() - APP_START_TIME, 2),
    )


@router.get("/ready", response_model=ReadinessStatus)
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)) -> ReadinessStatus:
    """
    Readiness probe endpoint.

    Verifies the database and the durable consent storage, and lists the
    platform adapters that are configured for dispatch.
    """
    checks = {
        "database": await _check_database(db),
        "consent_storage": await _check_consent_storage(request),
    }
    dispatcher = getattr(request.app.state, "dispatcher", None)

    all_healthy = all(check.get("status") in ("healthy", "degraded") for check in checks.values())

    return ReadinessStatus(
        status="ready" if all_healthy else "not_ready",
        timestamp=datetime.now(timezone.utc).isoformat(),
        platforms=dispatcher.platforms if dispatcher else [],
        checks=checks,
    )


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


async def _check_database(db: AsyncSession) -> dict[str, Any]:
    """Check database connectivity."""
    try:
        start = time.perf_counter()
        await db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
            "message": "Database connection successful",
        }
    except (SQLAlchemyError, OSError) as e:
        return {
            "status": "unhealthy",
            "error": str(e),
            "message": "Database connection failed",
        }


async def _check_consent_storage(request: Request) -> dict[str, Any]:
    """Check the durable consent backend. In-memory storage reports degraded."""
    backend = getattr(request.app.state, "consent_backend", None)
    if isinstance(backend, RedisBackend):
        try:
            start = time.perf_counter()
            await backend.ping()
            latency_ms = (time.perf_counter() - start) * 1000
            return {
                "status": "healthy",
                "latency_ms": round(latency_ms, 2),
                "message": "Redis connection successful",
            }
        except (RedisError, OSError) as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "message": "Redis connection failed",
            }
    if isinstance(backend, InMemoryBackend):
        return {
            "status": "degraded",
            "message": "In-memory consent storage; decisions are lost on restart",
        }
    return {"status": "unhealthy", "message": "Consent storage not initialized"}
