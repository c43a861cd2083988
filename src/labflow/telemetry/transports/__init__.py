"""Built-in telemetry transports.

- ConsoleTransport: print batches to stdout/stderr
- JsonlTransport: append batches to a JSON Lines file
- MemoryTransport: keep batches in a list

Transports are registered via the labflow_get_transports hook; the
BuiltinTransportsPlugin below registers all built-ins.
"""

from labflow.telemetry.hookspecs import hookimpl
from labflow.telemetry.transports.console import ConsoleTransport
from labflow.telemetry.transports.jsonl import JsonlTransport
from labflow.telemetry.transports.memory import MemoryTransport


class BuiltinTransportsPlugin:
    """Plugin that registers built-in telemetry transports."""

    @hookimpl
    def labflow_get_transports(self) -> list[type]:
        return [ConsoleTransport, JsonlTransport, MemoryTransport]


__all__ = [
    "BuiltinTransportsPlugin",
    "ConsoleTransport",
    "JsonlTransport",
    "MemoryTransport",
]
