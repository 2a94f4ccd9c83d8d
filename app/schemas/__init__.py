from .attribution import AttributionSnapshot, DeviceType
from .consent import ConsentCategory, ConsentState, ConsentStatusResponse, StoredConsentEnvelope
from .tracking import ConversionEvent, ConversionRequest, ConversionResponse, PageViewRequest, UserData

# Define the public API of this module
__all__ = [
    "AttributionSnapshot",
    "DeviceType",
    "ConsentCategory",
    "ConsentState",
    "ConsentStatusResponse",
    "StoredConsentEnvelope",
    "ConversionEvent",
    "ConversionRequest",
    "ConversionResponse",
    "PageViewRequest",
    "UserData",
]
