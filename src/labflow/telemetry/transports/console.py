# src/labflow/telemetry/transports/console.py
"""Console transport.

Writes each batch to stdout or stderr, compact (``json``) or indented
(``pretty``). Used for local debugging and the CLI.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Literal, TextIO, TypeGuard

import structlog

from labflow.contracts.errors import TelemetryTransportError

logger = structlog.get_logger(__name__)


def _is_valid_format(v: str) -> TypeGuard[Literal["json", "pretty"]]:
    return v in {"json", "pretty"}


def _is_valid_output(v: str) -> TypeGuard[Literal["stdout", "stderr"]]:
    return v in {"stdout", "stderr"}


class ConsoleTransport:
    """Print telemetry batches to stdout/stderr.

    Configuration options:
        format: "json" (default, one line per batch) or "pretty"
        output: "stdout" (default) or "stderr"

    Example configuration:
        telemetry:
          transports:
            - name: console
              options:
                format: pretty
                output: stderr
    """

    _name = "console"

    _VALID_FORMATS: frozenset[str] = frozenset({"json", "pretty"})
    _VALID_OUTPUTS: frozenset[str] = frozenset({"stdout", "stderr"})

    def __init__(self) -> None:
        self._format: Literal["json", "pretty"] = "json"
        self._output: Literal["stdout", "stderr"] = "stdout"
        self._stream: TextIO = sys.stdout

    @property
    def name(self) -> str:
        return self._name

    def configure(self, options: dict[str, Any]) -> None:
        """Raises TelemetryTransportError if format or output is invalid."""
        format_value = options.get("format", "json")
        if not isinstance(format_value, str):
            raise TelemetryTransportError(self._name, f"'format' must be a string, got {type(format_value).__name__}")
        if _is_valid_format(format_value):
            self._format = format_value
        else:
            raise TelemetryTransportError(
                self._name,
                f"Invalid format '{format_value}'. Must be one of: {', '.join(sorted(self._VALID_FORMATS))}",
            )

        output_value = options.get("output", "stdout")
        if not isinstance(output_value, str):
            raise TelemetryTransportError(self._name, f"'output' must be a string, got {type(output_value).__name__}")
        if _is_valid_output(output_value):
            self._output = output_value
        else:
            raise TelemetryTransportError(
                self._name,
                f"Invalid output '{output_value}'. Must be one of: {', '.join(sorted(self._VALID_OUTPUTS))}",
            )
        self._stream = sys.stdout if self._output == "stdout" else sys.stderr

        logger.debug("Console transport configured", format=self._format, output=self._output)

    def send(self, batch_json: str) -> None:
        try:
            if self._format == "json":
                line = batch_json
            else:
                line = json.dumps(json.loads(batch_json), indent=2)
            print(line, file=self._stream)
        except Exception as e:
            # send MUST NOT raise
            logger.warning("Failed to print telemetry batch", transport=self._name, error=str(e))

    def flush(self) -> None:
        try:
            self._stream.flush()
        except Exception as e:
            logger.warning("Failed to flush console stream", transport=self._name, error=str(e))

    def close(self) -> None:
        # The console transport does not own stdout/stderr
        pass
