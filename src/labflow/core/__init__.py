"""Core utilities: idempotency keys, canonical JSON, clocks, settings, logging."""

from labflow.core.canonical import canonical_json, compute_structured_fingerprint, stable_hash
from labflow.core.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock, format_iso, parse_iso, utc_now, utc_now_iso
from labflow.core.idempotency import attempt_key, build_key, compute_content_fingerprint, step_event_key

__all__ = [
    "DEFAULT_CLOCK",
    "Clock",
    "MockClock",
    "SystemClock",
    "attempt_key",
    "build_key",
    "canonical_json",
    "compute_content_fingerprint",
    "compute_structured_fingerprint",
    "format_iso",
    "parse_iso",
    "stable_hash",
    "step_event_key",
    "utc_now",
    "utc_now_iso",
]
