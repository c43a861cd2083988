# src/labflow/telemetry/transports/memory.py
"""In-memory transport: keeps every batch for inspection (tests, embedding hosts)."""

import json
from typing import Any

from labflow.contracts.errors import TelemetryTransportError


class MemoryTransport:
    """Keeps sent batches in order.

    Configuration options:
        max_batches: Optional cap; older batches are discarded beyond it
    """

    _name = "memory"

    def __init__(self) -> None:
        self.batches: list[str] = []
        self.closed = False
        self._max_batches: int | None = None

    @property
    def name(self) -> str:
        return self._name

    def configure(self, options: dict[str, Any]) -> None:
        max_batches = options.get("max_batches")
        if max_batches is not None and (isinstance(max_batches, bool) or not isinstance(max_batches, int) or max_batches < 1):
            raise TelemetryTransportError(self._name, f"'max_batches' must be a positive integer, got {max_batches!r}")
        self._max_batches = max_batches

    def send(self, batch_json: str) -> None:
        self.batches.append(batch_json)
        if self._max_batches is not None and len(self.batches) > self._max_batches:
            del self.batches[: len(self.batches) - self._max_batches]

    def decoded(self) -> list[dict[str, Any]]:
        """Sent batches parsed back into dicts."""
        return [json.loads(batch) for batch in self.batches]

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True
