"""
Google Ads click-conversion upload adapter.

Google models consent denial itself, so this adapter is always called. The
consent state travels in the payload; the gclid and hashed email are only
attached when the visitor granted marketing consent.
"""

from datetime import datetime, timezone
from typing import Any

from app.config import settings
from app.platforms.base import ConsentAwarePlatform, drop_empty, require_credentials
from app.schemas.tracking import ConversionEvent
from app.utils.hashing import hash_optional

GOOGLE_ADS_API_URL = "https://googleads.googleapis.com"


def conversion_datetime(moment: datetime) -> str:
    """Google Ads format: yyyy-mm-dd hh:mm:ss+hh:mm"""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S+00:00")


class GoogleAdsAdapter(ConsentAwarePlatform):
    name = "google"

    def __init__(
        self,
        ads_id: str | None = None,
        conversion_label: str | None = None,
        api_token: str | None = None,
        developer_token: str | None = None,
        api_version: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.ads_id = ads_id if ads_id is not None else settings.google_ads_id
        self.conversion_label = (
            conversion_label if conversion_label is not None else settings.google_ads_conversion_label
        )
        self.api_token = api_token if api_token is not None else settings.google_ads_api_token
        self.developer_token = developer_token if developer_token is not None else settings.google_ads_developer_token
        self.api_version = api_version or settings.google_ads_api_version
        require_credentials(
            self.name,
            ads_id=self.ads_id,
            conversion_label=self.conversion_label,
            api_token=self.api_token,
        )

    @property
    def customer_id(self) -> str:
        return (self.ads_id or "").replace("AW-", "").replace("-", "")

    def endpoint(self) -> str:
        return f"{GOOGLE_ADS_API_URL}/{self.api_version}/customers/{self.customer_id}:uploadClickConversions"

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["Authorization"] = f"Bearer {self.api_token}"
        if self.developer_token:
            headers["developer-token"] = self.developer_token
        return headers

    def build_payload(self, event: ConversionEvent, has_marketing_consent: bool) -> dict[str, Any]:
        consent_value = "GRANTED" if has_marketing_consent else "DENIED"
        conversion: dict[str, Any] = {
            "conversionAction": f"customers/{self.customer_id}/conversionActions/{self.conversion_label}",
            "conversionDateTime": conversion_datetime(datetime.now(timezone.utc)),
            "orderId": event.event_id,
            "consent": {"adUserData": consent_value, "adPersonalization": consent_value},
        }

        if has_marketing_consent:
            hashed_email = hash_optional(event.user_data.email)
            conversion.update(
                drop_empty(
                    {
                        "gclid": event.attribution.gclid,
                        "userIdentifiers": [{"hashedEmail": hashed_email}] if hashed_email else None,
                    }
                )
            )

        if event.value is not None:
            conversion["conversionValue"] = event.value
            conversion["currencyCode"] = event.currency or settings.default_currency

        return {"conversions": [conversion], "partialFailure": True}
