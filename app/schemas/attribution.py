from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

# Identifiers that may only be captured with marketing consent
RESTRICTED_FIELDS = ("gclid", "fbclid", "fbc", "fbp", "ttclid")

# Fields that make a snapshot worth persisting
MEANINGFUL_FIELDS = ("via", "utm_source", "utm_medium", "utm_campaign", "gclid", "fbclid", "fbc")


class AttributionSnapshot(BaseModel):
    """
    Visit provenance captured once per landing.

    Absent values are never serialized: use ``to_dict()`` for the wire form.
    """

    # Custom tracking (?via=partner)
    via: str | None = None

    # Standard UTM parameters
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_content: str | None = None
    utm_term: str | None = None

    # Metadata (non-personal)
    landing_page: str = Field(..., description="Path of the first page of the visit.")
    referrer: str | None = None
    device_type: DeviceType = DeviceType.DESKTOP
    user_agent: str | None = None
    timestamp: str = Field(..., description="ISO-8601 capture time.")

    # Restricted: marketing consent only
    gclid: str | None = None
    fbclid: str | None = None
    fbc: str | None = None
    fbp: str | None = None
    ttclid: str | None = None

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def has_restricted_fields(self) -> bool:
        return any(getattr(self, name) is not None for name in RESTRICTED_FIELDS)
