"""
TikTok Events API adapter.

TikTok receives the ttclid click identifier, so it is a restricted platform.
The Events API answers HTTP 200 with a non-zero ``code`` on rejected events.
"""

import time
from typing import Any

import httpx

from app.config import settings
from app.exceptions import NetworkError
from app.platforms.base import RestrictedPlatform, drop_empty, require_credentials
from app.schemas.tracking import ConversionEvent
from app.utils.hashing import hash_optional

TIKTOK_EVENTS_URL = "https://business-api.tiktok.com/open_api/v1.3/event/track/"


class TikTokEventsAdapter(RestrictedPlatform):
    name = "tiktok"

    event_names = {
        "signup": "CompleteRegistration",
        "login": "Login",
        "page_view": "Pageview",
        "view_pricing": "ViewContent",
        "initiate_checkout": "InitiateCheckout",
        "purchase": "CompletePayment",
    }

    def __init__(self, pixel_code: str | None = None, access_token: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.pixel_code = pixel_code if pixel_code is not None else settings.tiktok_pixel_code
        self.access_token = access_token if access_token is not None else settings.tiktok_access_token
        require_credentials(self.name, pixel_code=self.pixel_code, access_token=self.access_token)

    def endpoint(self) -> str:
        return TIKTOK_EVENTS_URL

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["Access-Token"] = self.access_token or ""
        return headers

    def build_payload(self, event: ConversionEvent, has_marketing_consent: bool) -> dict[str, Any]:
        attribution = event.attribution
        properties: dict[str, Any] = {}
        if event.value is not None:
            properties = {"value": event.value, "currency": event.currency or settings.default_currency}

        data = drop_empty(
            {
                "event": self.map_event_name(event.event_name),
                "event_time": int(time.time()),
                "event_id": event.event_id,
                "user": drop_empty(
                    {
                        "email": hash_optional(event.user_data.email),
                        "external_id": hash_optional(event.user_data.user_id),
                        "ttclid": attribution.ttclid,
                        "user_agent": attribution.user_agent,
                    }
                ),
                "properties": properties or None,
                "page": drop_empty(
                    {"url": self.page_url(attribution.landing_page), "referrer": attribution.referrer}
                ),
            }
        )
        return {"event_source": "web", "event_source_id": self.pixel_code, "data": [data]}

    def check_response(self, response: httpx.Response) -> None:
        try:
            body = response.json()
        except ValueError:
            return
        code = body.get("code", 0) if isinstance(body, dict) else 0
        if code != 0:
            raise NetworkError(
                self.name,
                f"Events API rejected event: code={code} message={body.get('message')}",
                status_code=response.status_code,
                retryable=False,
            )
