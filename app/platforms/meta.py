"""
Meta Conversions API adapter.

Meta receives fbc/fbp browser identifiers, so it is a restricted platform:
no marketing consent means no request at all.
"""

import time
from typing import Any

from app.config import settings
from app.platforms.base import RestrictedPlatform, drop_empty, require_credentials
from app.schemas.tracking import ConversionEvent
from app.utils.hashing import hash_optional

GRAPH_API_URL = "https://graph.facebook.com"


class MetaConversionsAdapter(RestrictedPlatform):
    name = "meta"

    event_names = {
        "signup": "CompleteRegistration",
        "login": "Lead",
        "page_view": "PageView",
        "view_pricing": "ViewContent",
        "initiate_checkout": "InitiateCheckout",
        "purchase": "Purchase",
    }

    def __init__(
        self,
        pixel_id: str | None = None,
        access_token: str | None = None,
        api_version: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.pixel_id = pixel_id if pixel_id is not None else settings.meta_pixel_id
        self.access_token = access_token if access_token is not None else settings.meta_access_token
        self.api_version = api_version or settings.meta_api_version
        require_credentials(self.name, pixel_id=self.pixel_id, access_token=self.access_token)

    def endpoint(self) -> str:
        return f"{GRAPH_API_URL}/{self.api_version}/{self.pixel_id}/events"

    def build_payload(self, event: ConversionEvent, has_marketing_consent: bool) -> dict[str, Any]:
        attribution = event.attribution
        user_data = drop_empty(
            {
                "em": hash_optional(event.user_data.email),
                "external_id": hash_optional(event.user_data.user_id),
                "client_user_agent": attribution.user_agent,
                "fbc": attribution.fbc,
                "fbp": attribution.fbp,
            }
        )

        custom_data: dict[str, Any] = {}
        if event.value is not None:
            custom_data = {"value": event.value, "currency": event.currency or settings.default_currency}

        server_event = drop_empty(
            {
                "event_name": self.map_event_name(event.event_name),
                "event_id": event.event_id,
                "event_time": int(time.time()),
                "event_source_url": self.page_url(attribution.landing_page),
                "referrer_url": attribution.referrer,
                "action_source": "website",
                "user_data": user_data,
                "custom_data": custom_data or None,
            }
        )
        return {"data": [server_event], "access_token": self.access_token}
