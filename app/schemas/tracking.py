from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.attribution import AttributionSnapshot

# Accepted by every bundled platform as a dedupe key (UUIDs qualify)
EVENT_ID_PATTERN = r"^[A-Za-z0-9._:\-]{1,64}$"

DispatchResult = dict[str, bool]


class TrackingEventType(str, Enum):
    SIGNUP = "signup"
    LOGIN = "login"
    PAGE_VIEW = "page_view"
    VIEW_PRICING = "view_pricing"
    INITIATE_CHECKOUT = "initiate_checkout"
    PURCHASE = "purchase"


class UserData(BaseModel):
    """Minimal user identifiers. Hashed by each adapter before leaving the process."""

    email: str | None = None
    user_id: str | None = None

    model_config = ConfigDict(frozen=True)


class ConversionEvent(BaseModel):
    event_name: str = Field(..., min_length=1)
    event_id: str = Field(..., pattern=EVENT_ID_PATTERN, description="Deduplication key forwarded to every platform.")
    attribution: AttributionSnapshot
    user_data: UserData = Field(default_factory=UserData)
    value: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class ConversionRequest(BaseModel):
    event: TrackingEventType = Field(..., description="Business event that occurred.")
    event_id: str | None = Field(None, pattern=EVENT_ID_PATTERN, description="Client-side event id for deduplication.")
    value: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    email: EmailStr | None = None
    user_id: str | None = Field(None, max_length=128)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "event": "purchase",
                "event_id": "5b0e6c1e-8f7a-4d43-9a35-7c3f0e4d2a11",
                "value": 49.0,
                "currency": "EUR",
                "email": "buyer@example.com",
                "user_id": "42",
            }
        }
    )


class ConversionResponse(BaseModel):
    event_id: str
    results: DispatchResult


class PageViewRequest(BaseModel):
    path: str = Field(..., min_length=1, max_length=2048)
    user_id: str | None = Field(None, max_length=128)
    attribution: dict[str, str] | None = None
    locale: str = Field("en", max_length=10)
