"""
Tests for app/services/consent_store.py

Covers save/load round-trip, store exclusivity, version and expiry
invalidation, malformed records and StorageError propagation.
"""

import json
from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from app.config import Settings
from app.exceptions import StorageError, ValidationError
from app.schemas.consent import DEFAULT_CONSENT_STATE, FULL_CONSENT_STATE, StoredConsentEnvelope
from app.services.consent_store import ConsentStore
from app.utils.storage import InMemoryBackend

DURABLE_KEY = "cookie-consent:visitor-1"
SESSION_KEY = "cookie-consent-session"


def envelope_json(version="1.0", marketing=True, timestamp="2026-03-01T12:00:00Z", expires_at=None) -> str:
    return json.dumps(
        {
            "version": version,
            "state": {"necessary": True, "marketing": marketing},
            "timestamp": timestamp,
            "expiresAt": expires_at,
        }
    )


class TestSave:
    @pytest.mark.asyncio
    async def test_accepted_consent_goes_to_durable_store(self, consent_store, durable_backend, session_backend, clock):
        envelope = await consent_store.save(FULL_CONSENT_STATE)

        assert envelope.expires_at == clock.now + timedelta(days=365)
        assert await durable_backend.get(DURABLE_KEY) is not None
        assert await session_backend.get(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_rejected_consent_goes_to_session_store(self, consent_store, durable_backend, session_backend):
        envelope = await consent_store.save(DEFAULT_CONSENT_STATE)

        assert envelope.expires_at is None
        assert await session_backend.get(SESSION_KEY) is not None
        assert await durable_backend.get(DURABLE_KEY) is None

    @pytest.mark.asyncio
    async def test_record_lives_in_exactly_one_store(self, consent_store, durable_backend, session_backend):
        await consent_store.save(FULL_CONSENT_STATE)
        await consent_store.save(DEFAULT_CONSENT_STATE)

        assert await durable_backend.get(DURABLE_KEY) is None
        assert await session_backend.get(SESSION_KEY) is not None

        await consent_store.save(FULL_CONSENT_STATE)

        assert await durable_backend.get(DURABLE_KEY) is not None
        assert await session_backend.get(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_stored_envelope_uses_wire_field_names(self, consent_store, durable_backend):
        await consent_store.save(FULL_CONSENT_STATE)

        data = json.loads(await durable_backend.get(DURABLE_KEY))
        assert set(data) == {"version", "state", "timestamp", "expiresAt"}
        assert data["state"] == {"necessary": True, "marketing": True}
        assert data["version"] == "1.0"

    @pytest.mark.asyncio
    async def test_durable_write_failure_raises_storage_error(self, session_backend, clock):
        store = ConsentStore(
            durable=InMemoryBackend(disabled=True),
            session=session_backend,
            durable_key=DURABLE_KEY,
            clock=clock,
        )

        with pytest.raises(StorageError) as exc_info:
            await store.save(FULL_CONSENT_STATE)

        assert "enable cookies" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_session_write_failure_raises_storage_error(self, durable_backend, clock):
        store = ConsentStore(
            durable=durable_backend,
            session=InMemoryBackend(disabled=True),
            durable_key=DURABLE_KEY,
            clock=clock,
        )

        with pytest.raises(StorageError):
            await store.save(DEFAULT_CONSENT_STATE)

    @pytest.mark.asyncio
    async def test_quota_exceeded_raises_storage_error(self, session_backend, clock):
        durable = InMemoryBackend(max_entries=1)
        await durable.set("someone-else", "x")
        store = ConsentStore(durable=durable, session=session_backend, durable_key=DURABLE_KEY, clock=clock)

        with pytest.raises(StorageError):
            await store.save(FULL_CONSENT_STATE)


class TestLoad:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [FULL_CONSENT_STATE, DEFAULT_CONSENT_STATE])
    async def test_round_trip(self, consent_store, state):
        await consent_store.save(state)

        envelope = await consent_store.load()

        assert envelope is not None
        assert envelope.state == state
        assert envelope.version == "1.0"

    @pytest.mark.asyncio
    async def test_nothing_stored_returns_none(self, consent_store):
        assert await consent_store.load() is None
        assert await consent_store.has_choice() is False
        assert await consent_store.get_state() == DEFAULT_CONSENT_STATE

    @pytest.mark.asyncio
    async def test_version_mismatch_returns_none_and_clears(self, consent_store, durable_backend):
        await durable_backend.set(DURABLE_KEY, envelope_json(version="0.9", expires_at="2027-01-01T00:00:00Z"))

        assert await consent_store.load() is None
        assert await durable_backend.get(DURABLE_KEY) is None

    @pytest.mark.asyncio
    async def test_session_version_mismatch_returns_none(self, consent_store, session_backend):
        await session_backend.set(SESSION_KEY, envelope_json(version="0.9", marketing=False))

        assert await consent_store.load() is None
        assert await session_backend.get(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_expired_durable_envelope_is_cleared(self, consent_store, clock):
        await consent_store.save(FULL_CONSENT_STATE)
        clock.now = clock.now + timedelta(days=366)

        assert await consent_store.load() is None
        # Cleanup is idempotent: the second load finds nothing either
        assert await consent_store.load() is None

    @pytest.mark.asyncio
    async def test_session_envelope_has_no_expiry_check(self, consent_store, clock):
        await consent_store.save(DEFAULT_CONSENT_STATE)
        clock.now = clock.now + timedelta(days=5000)

        envelope = await consent_store.load()
        assert envelope is not None
        assert envelope.state.marketing is False

    @pytest.mark.asyncio
    async def test_durable_store_checked_first(self, consent_store, durable_backend, session_backend):
        await durable_backend.set(DURABLE_KEY, envelope_json(marketing=True, expires_at="2027-01-01T00:00:00Z"))
        await session_backend.set(SESSION_KEY, envelope_json(marketing=False))

        envelope = await consent_store.load()
        assert envelope.state.marketing is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            json.dumps({"version": "1.0"}),
            json.dumps({"version": "1.0", "state": {"necessary": False, "marketing": True}, "timestamp": "x"}),
        ],
    )
    async def test_malformed_record_is_discarded(self, consent_store, durable_backend, raw):
        await durable_backend.set(DURABLE_KEY, raw)

        assert await consent_store.load() is None
        assert await durable_backend.get(DURABLE_KEY) is None

    @pytest.mark.asyncio
    async def test_malformed_durable_falls_back_to_session(self, consent_store, durable_backend, session_backend):
        await durable_backend.set(DURABLE_KEY, "{broken")
        await session_backend.set(SESSION_KEY, envelope_json(marketing=False))

        envelope = await consent_store.load()
        assert envelope is not None
        assert envelope.state.marketing is False

    @pytest.mark.asyncio
    async def test_read_failure_counts_as_no_consent(self, session_backend, clock):
        class BrokenBackend(InMemoryBackend):
            async def get(self, key):
                raise StorageError(operation="get")

        store = ConsentStore(durable=BrokenBackend(), session=session_backend, durable_key=DURABLE_KEY, clock=clock)

        assert await store.load() is None


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_removes_both_stores(self, consent_store, durable_backend, session_backend):
        await durable_backend.set(DURABLE_KEY, envelope_json(expires_at="2027-01-01T00:00:00Z"))
        await session_backend.set(SESSION_KEY, envelope_json(marketing=False))

        await consent_store.clear()

        assert await durable_backend.get(DURABLE_KEY) is None
        assert await session_backend.get(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, consent_store):
        await consent_store.clear()
        await consent_store.clear()

        assert await consent_store.has_choice() is False

    @pytest.mark.asyncio
    async def test_clear_tolerates_unavailable_storage(self, session_backend):
        store = ConsentStore(durable=InMemoryBackend(disabled=True), session=session_backend, durable_key=DURABLE_KEY)

        await store.clear()


class TestEnvelope:
    def test_alias_round_trip(self):
        envelope = StoredConsentEnvelope.model_validate(json.loads(envelope_json(expires_at="2027-01-01T00:00:00Z")))

        assert json.loads(envelope.to_json())["expiresAt"].startswith("2027-01-01")

    def test_session_scoped_envelope_never_expires(self, clock):
        envelope = StoredConsentEnvelope.model_validate(json.loads(envelope_json(marketing=False)))

        assert envelope.is_expired(clock.now + timedelta(days=10000)) is False


class TestParse:
    def test_invalid_json_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            ConsentStore._parse("not json")

        assert exc_info.value.status_code == 400

    def test_schema_violation_names_failing_fields(self):
        raw = json.dumps({"version": "1.0", "state": {"necessary": False, "marketing": True}, "timestamp": "x"})

        with pytest.raises(ValidationError) as exc_info:
            ConsentStore._parse(raw)

        assert any(path.startswith("state") for path in exc_info.value.details["errors"])

    @pytest.mark.asyncio
    async def test_version_mismatch_is_a_validation_error_resolved_as_no_consent(self, consent_store, session_backend):
        await session_backend.set(SESSION_KEY, envelope_json(version="0.9", marketing=False))

        with pytest.raises(ValidationError) as exc_info:
            await consent_store._read(session_backend, SESSION_KEY)

        assert exc_info.value.details == {"field": "version"}
        assert await consent_store.load() is None


class TestExpirationSetting:
    @pytest.mark.parametrize("days", [0, -1])
    def test_non_positive_expiration_is_rejected(self, days):
        with pytest.raises(PydanticValidationError):
            Settings(secret_key="test", consent_expiration_days=days)

    def test_default_expiration(self):
        assert Settings(secret_key="test").consent_expiration_days == 365
