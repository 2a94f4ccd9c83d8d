"""
Advertising platform adapters.

Each adapter turns a ConversionEvent into one platform's server-side
conversion API call. Adapters are registered on a PlatformRegistry and
fanned out by the ConversionDispatcher.
"""

from app.platforms.base import ConsentAwarePlatform, PlatformAdapter, RestrictedPlatform, RetryPolicy
from app.platforms.google_ads import GoogleAdsAdapter
from app.platforms.meta import MetaConversionsAdapter
from app.platforms.registry import PlatformRegistry
from app.platforms.tiktok import TikTokEventsAdapter

__all__ = [
    "ConsentAwarePlatform",
    "GoogleAdsAdapter",
    "MetaConversionsAdapter",
    "PlatformAdapter",
    "PlatformRegistry",
    "RestrictedPlatform",
    "RetryPolicy",
    "TikTokEventsAdapter",
]
