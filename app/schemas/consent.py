from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class ConsentCategory(str, Enum):
    """Togglable classes of tracking permission. Only marketing is user-controlled."""

    NECESSARY = "necessary"
    MARKETING = "marketing"


class ConsentState(BaseModel):
    necessary: Literal[True] = Field(True, description="Always granted; cannot be disabled.")
    marketing: bool = Field(False, description="Ad tracking: click identifiers, pixels, conversion APIs.")

    model_config = ConfigDict(frozen=True)


DEFAULT_CONSENT_STATE = ConsentState(necessary=True, marketing=False)
FULL_CONSENT_STATE = ConsentState(necessary=True, marketing=True)


class StoredConsentEnvelope(BaseModel):
    """
    Persisted consent record.

    ``expires_at`` is serialized as ``expiresAt``; ``None`` marks a
    session-scoped decision that is never written to durable storage.
    """

    version: str
    state: ConsentState
    timestamp: AwareDatetime
    expires_at: AwareDatetime | None = Field(None, alias="expiresAt")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ConsentUpdate(BaseModel):
    granted: bool = Field(..., title="Granted", description="Whether the category is granted.")


class ConsentSignals(BaseModel):
    ad_storage: Literal["granted", "denied"]
    analytics_storage: Literal["granted", "denied"]
    ad_user_data: Literal["granted", "denied"]
    ad_personalization: Literal["granted", "denied"]
    wait_for_update: int | None = None


class ConsentStatusResponse(BaseModel):
    consent: ConsentState
    has_consented: bool
    show_banner: bool
    is_enabled: bool
    is_preferences_open: bool
    version: str
    default_signals: ConsentSignals
    signals: ConsentSignals
    commands: list[list] = Field(default_factory=list, description="Queued tag commands to replay into dataLayer.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "consent": {"necessary": True, "marketing": False},
                "has_consented": True,
                "show_banner": False,
                "is_enabled": True,
                "is_preferences_open": False,
                "version": "1.0",
                "default_signals": {
                    "ad_storage": "denied",
                    "analytics_storage": "denied",
                    "ad_user_data": "denied",
                    "ad_personalization": "denied",
                    "wait_for_update": 500,
                },
                "signals": {
                    "ad_storage": "denied",
                    "analytics_storage": "granted",
                    "ad_user_data": "denied",
                    "ad_personalization": "denied",
                },
                "commands": [],
            }
        }
    )


class ConsentHistoryEntry(BaseModel):
    id: int
    policy_version: str
    marketing_granted: bool
    action: str
    consented_at: datetime

    model_config = ConfigDict(from_attributes=True)
