"""Deterministic idempotency keys and content fingerprints.

Every function here is pure: identical inputs always yield identical keys,
so a retried publish phase or a re-sent telemetry event is recognized
server-side as the same operation.
"""

import hashlib
import re

from labflow.contracts.config import get_internal_default

_UNKNOWN = "unknown"
_UNSAFE_LAB_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


def _normalize(value: str | None) -> str:
    if value is None or not value.strip():
        return _UNKNOWN
    return value.strip()


def build_key(
    tenant_id: str | None,
    lab_id: str | None,
    lab_version_id: str | None,
    content_hash: str | None,
) -> str:
    """Build the idempotency key for a publish transaction.

    Each part is trimmed, blank or None parts become ``unknown``, and the
    whole key is lower-cased.

    Example:
        >>> build_key("tenant-1", "lab-1", "ver-1", "hash-1")
        'publish:tenant-1:lab-1:ver-1:hash-1'
    """
    parts = (_normalize(tenant_id), _normalize(lab_id), _normalize(lab_version_id), _normalize(content_hash))
    return ("publish:" + ":".join(parts)).lower()


def compute_content_fingerprint(value: str | None) -> str:
    """SHA-256 of the UTF-8 bytes of ``value`` (None hashes as empty), 64 lowercase hex chars."""
    return hashlib.sha256((value or "").encode("utf-8")).hexdigest()


def step_event_key(attempt_id: str, sequence_number: int) -> str:
    """Idempotency key of one step event: ``step:<attempt_id>:<sequence_number>``."""
    return f"step:{attempt_id}:{sequence_number}"


def attempt_key(lab_id: str | None, token: str) -> str:
    """Attempt-level idempotency key: ``attempt:<lab>:<token>``.

    The lab id is reduced to ``[A-Za-z0-9_-]`` (other characters become
    ``-``) so the key stays a single colon-delimited segment.
    """
    lab = _UNSAFE_LAB_CHARS.sub("-", _normalize(lab_id))
    prefix = get_internal_default("registry", "attempt_key_prefix")
    return f"{prefix}:{lab}:{token}"
