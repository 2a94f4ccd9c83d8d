"""
Custom Exception Classes for the Attribution Service

This module defines the error taxonomy of the consent and conversion
pipeline. Each exception carries an HTTP status code and a machine-readable
error code so the global handlers can render a consistent error envelope.

Propagation policy:
- StorageError bubbles up to the caller (a lost consent decision must be visible).
- ValidationError is resolved locally by treating the envelope as "no consent".
- NetworkError never leaves a platform adapter; it becomes a False result.
- ConfigurationError disables a platform adapter at construction time.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes, usable by frontends for i18n."""

    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    PLATFORM_DELIVERY_FAILED = "PLATFORM_DELIVERY_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class TrackingError(Exception):
    """Base exception class for all attribution and consent errors"""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


# ============================================================================
# Consent Storage Exceptions
# ============================================================================


class StorageError(TrackingError):
    """Raised when a consent decision cannot be written to storage"""

    error_code = ErrorCode.STORAGE_UNAVAILABLE

    def __init__(
        self,
        message: str = "Failed to save cookie preferences. Please enable cookies in your browser.",
        operation: str | None = None,
    ):
        details = {"operation": operation} if operation else {}
        super().__init__(message=message, status_code=status.HTTP_507_INSUFFICIENT_STORAGE, details=details)


class ValidationError(TrackingError):
    """Raised when a stored envelope or event payload is malformed"""

    error_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=error_details)


# ============================================================================
# Platform Dispatch Exceptions
# ============================================================================


class NetworkError(TrackingError):
    """Raised inside a platform adapter when a delivery attempt fails"""

    error_code = ErrorCode.PLATFORM_DELIVERY_FAILED

    def __init__(
        self,
        platform: str,
        message: str = "Platform delivery failed",
        status_code: int | None = None,
        retryable: bool = True,
    ):
        self.platform = platform
        self.upstream_status = status_code
        self.retryable = retryable
        self.attempt: int | None = None
        details: dict[str, Any] = {"platform": platform}
        if status_code is not None:
            details["upstream_status"] = status_code
        super().__init__(message=message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class ConfigurationError(TrackingError):
    """Raised when a platform adapter is missing required credentials"""

    error_code = ErrorCode.CONFIGURATION_ERROR

    def __init__(self, platform: str, missing: list[str]):
        self.platform = platform
        self.missing = missing
        super().__init__(
            message=f"Platform '{platform}' is not configured: missing {', '.join(missing)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"platform": platform, "missing": missing},
        )
