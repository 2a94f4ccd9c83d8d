"""
Tests for app/utils/hashing.py
"""

import hashlib
from datetime import date

import pytest

from app.utils.hashing import hash_identifier, hash_optional, normalize_identifier, visitor_hash


class TestHashIdentifier:
    def test_normalizes_before_hashing(self):
        assert hash_identifier("Test@Example.com") == hash_identifier("test@example.com")

    def test_trims_whitespace(self):
        assert hash_identifier("  test@example.com \n") == hash_identifier("test@example.com")

    def test_is_sha256_hex(self):
        digest = hash_identifier("test@example.com")

        assert digest == hashlib.sha256(b"test@example.com").hexdigest()
        assert len(digest) == 64

    def test_normalize_identifier(self):
        assert normalize_identifier(" MiXeD ") == "mixed"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_hash_optional_skips_empty(self, value):
        assert hash_optional(value) is None

    def test_hash_optional_hashes_value(self):
        assert hash_optional("42") == hash_identifier("42")


class TestVisitorHash:
    def test_rotates_daily(self):
        ua = "Mozilla/5.0"

        assert visitor_hash(ua, date(2026, 3, 1)) != visitor_hash(ua, date(2026, 3, 2))

    def test_stable_within_a_day(self):
        ua = "Mozilla/5.0"

        assert visitor_hash(ua, date(2026, 3, 1)) == visitor_hash(ua, date(2026, 3, 1))
        assert visitor_hash(ua, date(2026, 3, 1)) == hashlib.sha256(b"Mozilla/5.0-2026-03-01").hexdigest()
