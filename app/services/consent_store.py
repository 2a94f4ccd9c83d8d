"""
Consent Store

Persists, loads and clears the visitor's versioned consent envelope.

- Accepted consent (marketing granted) goes to durable storage with an expiry.
- Rejected consent goes to session storage only and dies with the session.

A record lives in exactly one of the two stores at any time.
"""

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.exceptions import StorageError, ValidationError
from app.schemas.consent import DEFAULT_CONSENT_STATE, ConsentState, StoredConsentEnvelope
from app.utils.storage import KeyValueBackend

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConsentStore:
    """Versioned, expiring consent persistence over a durable and a session backend."""

    def __init__(
        self,
        durable: KeyValueBackend,
        session: KeyValueBackend,
        durable_key: str,
        session_key: str = settings.consent_session_storage_key,
        version: str = settings.consent_version,
        expiration_days: int = settings.consent_expiration_days,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.durable = durable
        self.session = session
        self.durable_key = durable_key
        self.session_key = session_key
        self.version = version
        self.expiration_days = expiration_days
        self._clock = clock

    async def save(self, state: ConsentState) -> StoredConsentEnvelope:
        """
        Persist a consent decision.

        Raises:
            StorageError: if the write fails. Never swallowed: a silently lost
                rejection would mislead the visitor.
        """
        now = self._clock()
        has_accepted = state.marketing
        envelope = StoredConsentEnvelope(
            version=self.version,
            state=state,
            timestamp=now,
            expires_at=now + timedelta(days=self.expiration_days) if has_accepted else None,
        )
        payload = envelope.to_json()

        try:
            if has_accepted:
                ttl_seconds = int((envelope.expires_at - now).total_seconds())
                await self.durable.set(self.durable_key, payload, ttl_seconds=ttl_seconds)
                await self.session.delete(self.session_key)
            else:
                await self.session.set(self.session_key, payload)
                await self.durable.delete(self.durable_key)
        except StorageError:
            logger.error(f"Failed to save consent (marketing={has_accepted}) for {self.durable_key}")
            raise

        logger.info(f"Consent saved: marketing={has_accepted} version={self.version}")
        return envelope

    async def load(self) -> StoredConsentEnvelope | None:
        """
        Return the first valid envelope, durable store first, or None.

        Version mismatches and expired durable envelopes clear both stores.
        Malformed records and read failures count as "no consent".
        """
        try:
            envelope = await self._read(self.durable, self.durable_key)
            if envelope is not None:
                if envelope.is_expired(self._clock()):
                    logger.info("Stored consent expired, clearing")
                    await self.clear()
                    return None
                return envelope

            return await self._read(self.session, self.session_key)
        except ValidationError as e:
            logger.info(f"Clearing stored consent: {e.message}")
            await self.clear()
            return None
        except StorageError as e:
            logger.warning(f"Failed to load consent: {e.message}")
            return None

    async def clear(self) -> None:
        """Remove consent from both stores. Safe to call repeatedly."""
        await self._safe_delete(self.durable, self.durable_key)
        await self._safe_delete(self.session, self.session_key)

    async def has_choice(self) -> bool:
        return await self.load() is not None

    async def get_state(self) -> ConsentState:
        envelope = await self.load()
        return envelope.state if envelope else DEFAULT_CONSENT_STATE

    async def _read(self, backend: KeyValueBackend, key: str) -> StoredConsentEnvelope | None:
        """
        Read one store. A malformed record is deleted and reads as None.

        Raises:
            ValidationError: the envelope was written under another policy version.
        """
        raw = await backend.get(key)
        if not raw:
            return None
        try:
            envelope = self._parse(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed consent record {key}: {e.message}")
            await self._safe_delete(backend, key)
            return None

        if envelope.version != self.version:
            raise ValidationError(
                f"Consent version mismatch ({envelope.version} != {self.version})",
                field="version",
            )
        return envelope

    @staticmethod
    def _parse(raw: str) -> StoredConsentEnvelope:
        try:
            return StoredConsentEnvelope.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            raise ValidationError(f"Consent record is not JSON: {e.msg}") from e
        except PydanticValidationError as e:
            raise ValidationError(
                f"Consent record failed validation: {e.error_count()} error(s)",
                details={"errors": [".".join(str(loc) for loc in err["loc"]) for err in e.errors()]},
            ) from e

    @staticmethod
    async def _safe_delete(backend: KeyValueBackend, key: str) -> None:
        try:
            await backend.delete(key)
        except StorageError as e:
            logger.warning(f"Failed to clear consent key {key}: {e.message}")
