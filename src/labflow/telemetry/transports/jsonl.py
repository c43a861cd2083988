# src/labflow/telemetry/transports/jsonl.py
"""JSON Lines file transport: appends one batch per line.

Useful as an offline outbox: a separate uploader can replay the file, and
the idempotency keys inside each batch make replays safe.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO, Any

import structlog

from labflow.contracts.errors import TelemetryTransportError

logger = structlog.get_logger(__name__)


class JsonlTransport:
    """Append telemetry batches to a ``.jsonl`` file.

    Configuration options:
        path: Target file (required). Parent directories are created.
    """

    _name = "jsonl"

    def __init__(self) -> None:
        self._path: Path | None = None
        self._handle: IO[str] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def path(self) -> Path | None:
        return self._path

    def configure(self, options: dict[str, Any]) -> None:
        path_value = options.get("path")
        if not isinstance(path_value, str) or not path_value.strip():
            raise TelemetryTransportError(self._name, "'path' is required and must be a non-empty string")
        path = Path(path_value.strip())
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = path.open("a", encoding="utf-8")
        except OSError as e:
            raise TelemetryTransportError(self._name, f"Cannot open '{path}' for append: {e}") from e
        self._path = path
        logger.debug("JSONL transport configured", path=str(path))

    def send(self, batch_json: str) -> None:
        if self._handle is None:
            logger.warning("JSONL transport used before configure()", transport=self._name)
            return
        try:
            self._handle.write(batch_json.replace("\n", " ") + "\n")
        except OSError as e:
            logger.warning("Failed to append telemetry batch", transport=self._name, path=str(self._path), error=str(e))

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.flush()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
