"""
Pytest configuration and fixtures for the attribution service tests

No live database, Redis or platform API is required: storage runs on the
in-memory backend, platform HTTP goes through httpx.MockTransport and DB
sessions are AsyncMock objects.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

# Settings are read at import time: configure before importing the app
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")
for _credential in (
    "REDIS_URL",
    "META_PIXEL_ID",
    "META_ACCESS_TOKEN",
    "GOOGLE_ADS_ID",
    "GOOGLE_ADS_API_TOKEN",
    "TIKTOK_PIXEL_CODE",
    "TIKTOK_ACCESS_TOKEN",
):
    os.environ.pop(_credential, None)

from fastapi.testclient import TestClient  # noqa: E402

from app.platforms.base import RetryPolicy  # noqa: E402
from app.schemas.attribution import AttributionSnapshot  # noqa: E402
from app.services.consent_store import ConsentStore  # noqa: E402
from app.utils.storage import InMemoryBackend, SessionBackend  # noqa: E402
from main import app  # noqa: E402
from utils.mocks import DESKTOP_UA, FakeClock, RecordingTransport  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def durable_backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def session_data() -> dict:
    """Stands in for request.session."""
    return {}


@pytest.fixture
def session_backend(session_data: dict) -> SessionBackend:
    return SessionBackend(session_data)


@pytest.fixture
def consent_store(durable_backend, session_backend, clock) -> ConsentStore:
    return ConsentStore(
        durable=durable_backend,
        session=session_backend,
        durable_key="cookie-consent:visitor-1",
        session_key="cookie-consent-session",
        version="1.0",
        expiration_days=365,
        clock=clock,
    )


@pytest.fixture
def snapshot() -> AttributionSnapshot:
    """A consented landing from a Meta ad with UTMs and click identifiers."""
    return AttributionSnapshot(
        utm_source="facebook",
        utm_medium="cpc",
        utm_campaign="spring_sale",
        landing_page="/pricing",
        referrer="https://www.facebook.com/",
        device_type="desktop",
        user_agent=DESKTOP_UA,
        timestamp="2026-03-01T12:00:00.000Z",
        gclid="gclid-abc",
        fbclid="fbclid-xyz",
        fbc="fb.1.1772366400000.fbclid-xyz",
        fbp="fb.1.1700000000000.1234567890",
        ttclid="ttclid-123",
    )


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replaces asyncio.sleep in retry loops."""
    return AsyncMock(return_value=None)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.5, multiplier=2.0, max_delay=8.0)


@pytest.fixture
def transport_factory() -> type[RecordingTransport]:
    return RecordingTransport


@pytest.fixture
def mock_db() -> AsyncMock:
    """AsyncSession stand-in with sync add() and awaited commit/refresh/execute."""
    db = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.refresh = AsyncMock(return_value=None)
    return db


@pytest.fixture
def client():
    """TestClient with startup/shutdown events (in-memory consent storage, no platforms)."""
    with TestClient(app) as test_client:
        yield test_client
