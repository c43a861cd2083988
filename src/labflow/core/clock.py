# src/labflow/core/clock.py
"""Clock abstraction for testable flush and throttle timing.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.

Wall-clock timestamps (history entries, client timestamps, attempt
durations) are separate: they come from ``utc_now()`` and are rendered with
``utc_now_iso()`` / parsed with ``parse_iso()``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

UtcNow = Callable[[], datetime]


class Clock(Protocol):
    """Abstract monotonic clock.

    Implementations:
    - SystemClock: Uses time.monotonic() (production)
    - MockClock: Returns controllable times (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds (never goes backwards)."""
        ...


class SystemClock:
    """Production clock using time.monotonic()."""

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(start=0.0)
        pipeline = TelemetryEventPipeline(config, provider, validator, clock=clock)

        pipeline.queue_step_event("interaction", "click")
        clock.advance(3.0)
        assert pipeline.tick() == 1
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start

    def monotonic(self) -> float:
        return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds

    def set(self, value: float) -> None:
        """Set mock time to an absolute value (may go backwards, tests only)."""
        self._current = value


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def format_iso(moment: datetime) -> str:
    """Render an ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_iso(utc_now())


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, or return None when blank or unparsable.

    Naive timestamps are taken to be UTC.
    """
    if value is None or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
