"""
Identifier hashing for outbound platform payloads.

Direct identifiers are normalized (trim + lowercase) and reduced to a
SHA-256 hex digest before they leave the process.
"""

import hashlib
from datetime import date


def normalize_identifier(value: str) -> str:
    return value.strip().lower()


def hash_identifier(value: str) -> str:
    """Return the 64-char SHA-256 hex digest of the normalized value."""
    return hashlib.sha256(normalize_identifier(value).encode("utf-8")).hexdigest()


def hash_optional(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return hash_identifier(value)


def visitor_hash(user_agent: str, day: date) -> str:
    """Daily-rotating anonymous visitor fingerprint used for page views."""
    return hashlib.sha256(f"{user_agent}-{day.isoformat()}".encode()).hexdigest()
