# src/labflow/core/canonical.py
"""
Canonical JSON serialization for order-independent fingerprints.

Build manifests and report sections are dicts whose key order depends on
who produced them. Serializing per RFC 8785/JCS (rfc8785 package) first
makes their hashes independent of that order.

IMPORTANT: NaN and Infinity are strictly REJECTED, not silently converted.
"""

import hashlib
import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import rfc8785

# Version string recorded next to structured fingerprints
CANONICAL_VERSION = "sha256-rfc8785-v1"


def _normalize_value(obj: Any) -> Any:
    """Convert a single value to a JSON-safe primitive.

    Raises:
        ValueError: If value is a non-finite float
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}. Use None for missing values, not NaN.")
        return obj

    # Enum check before str: StrEnum members are also str instances
    if isinstance(obj, Enum):
        return obj.value

    if obj is None or isinstance(obj, str | int | bool):
        return obj

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.astimezone(UTC).isoformat()

    return obj


def _normalize_for_canonical(data: Any) -> Any:
    if isinstance(data, dict):
        return {str(k): _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON (no whitespace, sorted keys).

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains types that cannot be serialized
    """
    normalized = _normalize_for_canonical(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of ``canonical_json(obj)``."""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()


def compute_structured_fingerprint(obj: Any) -> str:
    """Fingerprint a structured value (e.g. a build manifest) independent of key order.

    Two dicts with the same content but different insertion order produce
    the same fingerprint, unlike ``compute_content_fingerprint`` over
    ``json.dumps`` output.
    """
    return stable_hash(obj)
