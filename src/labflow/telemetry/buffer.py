# src/labflow/telemetry/buffer.py
"""Bounded FIFO queue of pending step events.

- Ring buffer via deque(maxlen=N): oldest-first eviction on overflow
- was_full checked BEFORE append (deque evicts during append)
- Aggregate logging: one warning per 100 drops
"""

from collections import deque

import structlog

from labflow.contracts.config import get_internal_default
from labflow.contracts.telemetry import StepEvent

logger = structlog.get_logger(__name__)


class BoundedBuffer:
    """Ring buffer that drops the oldest event on overflow.

    Thread Safety:
        NOT thread-safe. TelemetryEventPipeline serializes access under its
        own lock.

    Example:
        buffer = BoundedBuffer(max_size=1000)
        buffer.append(event)
        batch = buffer.pop_batch(max_count=10)
    """

    _LOG_INTERVAL = int(get_internal_default("telemetry", "drop_warning_every"))

    def __init__(self, max_size: int = 10_000) -> None:
        """Raises ValueError if max_size < 1."""
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._buffer: deque[StepEvent] = deque(maxlen=max_size)
        self._dropped_count: int = 0
        self._last_logged_drop_count: int = 0

    def append(self, event: StepEvent) -> bool:
        """Append ``event``.

        Returns:
            True if the append evicted the oldest pending event
        """
        was_full = len(self._buffer) == self._buffer.maxlen
        self._buffer.append(event)
        if not was_full:
            return False

        self._dropped_count += 1
        if self._dropped_count - self._last_logged_drop_count >= self._LOG_INTERVAL:
            logger.warning(
                "Telemetry pending queue overflow - oldest events dropped",
                dropped_since_last_log=self._dropped_count - self._last_logged_drop_count,
                dropped_total=self._dropped_count,
                buffer_size=self._buffer.maxlen,
                hint="Check transport health or increase max_pending_events",
            )
            self._last_logged_drop_count = self._dropped_count
        return True

    def pop_batch(self, max_count: int) -> list[StepEvent]:
        """Pop up to max_count events, oldest first."""
        return [self._buffer.popleft() for _ in range(min(max_count, len(self._buffer)))]

    def pop_all(self) -> list[StepEvent]:
        batch = list(self._buffer)
        self._buffer.clear()
        return batch

    @property
    def dropped_count(self) -> int:
        """Number of events dropped due to overflow."""
        return self._dropped_count

    @property
    def max_size(self) -> int:
        return self._buffer.maxlen or 0

    def __len__(self) -> int:
        return len(self._buffer)
