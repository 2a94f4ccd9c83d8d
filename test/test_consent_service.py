"""
Tests for app/services/consent_service.py

ConsentManager lifecycle, mutation entry points, subscriptions and the
consent cookie helpers.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from starlette.responses import Response

from app.exceptions import StorageError
from app.schemas.consent import DEFAULT_CONSENT_STATE, FULL_CONSENT_STATE
from app.services.consent_service import (
    PREFERENCES_OPEN_KEY,
    ConsentManager,
    consent_cookie_value,
    set_consent_cookie,
)
from app.services.consent_signals import CommandQueueSink, ConsentSignalMapper
from app.services.consent_store import ConsentStore
from app.utils.storage import InMemoryBackend


@pytest.fixture
def sink() -> CommandQueueSink:
    return CommandQueueSink()


@pytest.fixture
async def manager(consent_store, sink) -> ConsentManager:
    return await ConsentManager(consent_store, mapper=ConsentSignalMapper(sink=sink)).initialize()


class TestInitialize:
    @pytest.mark.asyncio
    async def test_first_visit_shows_banner_with_marketing_denied(self, manager):
        assert manager.is_initialized is True
        assert manager.has_consented is False
        assert manager.consent == DEFAULT_CONSENT_STATE
        assert manager.show_banner is True

    @pytest.mark.asyncio
    async def test_restores_stored_decision(self, consent_store):
        await consent_store.save(FULL_CONSENT_STATE)

        manager = await ConsentManager(consent_store).initialize()

        assert manager.consent == FULL_CONSENT_STATE
        assert manager.has_consented is True
        assert manager.show_banner is False

    @pytest.mark.asyncio
    async def test_disabled_consent_applies_default_without_banner(self, consent_store):
        manager = await ConsentManager(consent_store, enabled=False).initialize()

        assert manager.consent == FULL_CONSENT_STATE
        assert manager.show_banner is False

    @pytest.mark.asyncio
    async def test_pushes_restored_signals(self, manager, sink):
        assert sink.commands[-1][:2] == ["consent", "update"]
        assert sink.commands[-1][2]["ad_storage"] == "denied"

    @pytest.mark.asyncio
    async def test_restores_preferences_flag(self, consent_store):
        await consent_store.session.set(PREFERENCES_OPEN_KEY, "1")

        manager = await ConsentManager(consent_store).initialize()

        assert manager.is_preferences_open is True


class TestMutations:
    @pytest.mark.asyncio
    async def test_accept_all(self, manager, consent_store, sink):
        state = await manager.accept_all()

        assert state.marketing is True
        assert manager.has_consented is True
        assert manager.show_banner is False
        assert (await consent_store.load()).state == FULL_CONSENT_STATE
        assert sink.commands[-1][2]["ad_user_data"] == "granted"

    @pytest.mark.asyncio
    async def test_reject_all(self, manager, consent_store):
        await manager.accept_all()
        state = await manager.reject_all()

        assert state.marketing is False
        assert (await consent_store.load()).state == DEFAULT_CONSENT_STATE

    @pytest.mark.asyncio
    async def test_update_marketing(self, manager):
        state = await manager.update_consent("marketing", True)

        assert state.marketing is True
        assert manager.has_consented is True

    @pytest.mark.asyncio
    async def test_necessary_cannot_be_changed(self, manager, consent_store):
        state = await manager.update_consent("necessary", False)

        assert state.necessary is True
        assert manager.has_consented is False
        assert await consent_store.load() is None

    @pytest.mark.asyncio
    async def test_unknown_category_rejected(self, manager):
        with pytest.raises(ValueError):
            await manager.update_consent("analytics", True)

    @pytest.mark.asyncio
    async def test_failed_save_leaves_state_unchanged(self, session_backend):
        store = ConsentStore(
            durable=InMemoryBackend(disabled=True),
            session=session_backend,
            durable_key="cookie-consent:visitor-1",
        )
        manager = await ConsentManager(store).initialize()
        listener = MagicMock()
        manager.subscribe(listener)

        with pytest.raises(StorageError):
            await manager.accept_all()

        assert manager.consent == DEFAULT_CONSENT_STATE
        assert manager.has_consented is False
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_records_decision_metric(self, manager):
        with patch("app.services.consent_service.record_consent_decision") as record:
            await manager.reject_all()

        record.assert_called_once_with("reject_all")

    @pytest.mark.asyncio
    async def test_on_decision_callback_awaited(self, consent_store):
        on_decision = AsyncMock()
        manager = await ConsentManager(consent_store, on_decision=on_decision).initialize()

        await manager.update_consent("marketing", True)

        on_decision.assert_awaited_once_with("update_marketing", FULL_CONSENT_STATE)

    @pytest.mark.asyncio
    async def test_clear_forgets_decision(self, manager, consent_store):
        await manager.accept_all()

        await manager.clear()

        assert manager.has_consented is False
        assert manager.consent == DEFAULT_CONSENT_STATE
        assert manager.show_banner is True
        assert await consent_store.has_choice() is False


class TestPreferences:
    @pytest.mark.asyncio
    async def test_open_and_close(self, manager, consent_store):
        await manager.open_preferences()
        assert manager.is_preferences_open is True
        assert await consent_store.session.get(PREFERENCES_OPEN_KEY) == "1"

        await manager.close_preferences()
        assert manager.is_preferences_open is False
        assert await consent_store.session.get(PREFERENCES_OPEN_KEY) is None

    @pytest.mark.asyncio
    async def test_preferences_reopen_after_decision(self, manager):
        await manager.reject_all()
        await manager.open_preferences()

        state = await manager.update_consent("marketing", True)

        assert state.marketing is True


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_listener_receives_new_state(self, manager):
        listener = MagicMock()
        manager.subscribe(listener)

        await manager.accept_all()

        listener.assert_called_once_with(FULL_CONSENT_STATE)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, manager):
        listener = MagicMock()
        unsubscribe = manager.subscribe(listener)
        unsubscribe()
        unsubscribe()

        await manager.accept_all()

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, manager):
        broken = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        manager.subscribe(broken)
        manager.subscribe(healthy)

        await manager.reject_all()

        healthy.assert_called_once_with(DEFAULT_CONSENT_STATE)


class TestConsentCookie:
    def test_cookie_values(self):
        assert consent_cookie_value(FULL_CONSENT_STATE) == "full"
        assert consent_cookie_value(DEFAULT_CONSENT_STATE) == "necessary"

    def test_accepted_cookie_is_durable(self):
        response = Response()
        set_consent_cookie(response, FULL_CONSENT_STATE)

        header = response.headers["set-cookie"]
        assert header.startswith("consent=full")
        assert "Max-Age=31536000" in header

    def test_rejected_cookie_is_session_scoped(self):
        response = Response()
        set_consent_cookie(response, DEFAULT_CONSENT_STATE)

        header = response.headers["set-cookie"]
        assert header.startswith("consent=necessary")
        assert "Max-Age" not in header
