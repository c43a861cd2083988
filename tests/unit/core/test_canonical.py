# tests/unit/core/test_canonical.py
"""Tests for canonical JSON and structured fingerprints."""

import math
from datetime import UTC, datetime

import pytest

from labflow.contracts.enums import TransactionState
from labflow.core.canonical import canonical_json, compute_structured_fingerprint, stable_hash


class TestCanonicalJson:
    def test_key_order_does_not_matter(self) -> None:
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})

    def test_no_whitespace(self) -> None:
        assert canonical_json({"a": [1, 2]}) == '{"a":[1,2]}'

    def test_enums_serialize_as_values(self) -> None:
        assert canonical_json({"state": TransactionState.BUILT}) == '{"state":"built"}'

    def test_aware_datetimes_serialize_in_utc(self) -> None:
        moment = datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert canonical_json({"at": moment}) == '{"at":"2025-01-02T03:04:05+00:00"}'

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_floats_rejected(self, bad: float) -> None:
        with pytest.raises(ValueError, match="non-finite"):
            canonical_json({"x": bad})


class TestStableHash:
    def test_same_content_same_hash(self) -> None:
        assert stable_hash({"a": 1, "b": [1, 2]}) == stable_hash({"b": [1, 2], "a": 1})

    def test_different_content_different_hash(self) -> None:
        assert stable_hash({"a": 1}) != stable_hash({"a": 2})

    def test_structured_fingerprint_is_sha256_hex(self) -> None:
        fingerprint = compute_structured_fingerprint({"bundles": ["a", "b"]})
        assert len(fingerprint) == 64
        assert fingerprint == stable_hash({"bundles": ["a", "b"]})
