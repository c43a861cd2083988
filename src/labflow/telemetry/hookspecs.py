# src/labflow/telemetry/hookspecs.py
"""pluggy hook specifications for telemetry transports.

Usage (implementing a transport plugin):
    from labflow.telemetry.hookspecs import hookimpl

    class MyTransportPlugin:
        @hookimpl
        def labflow_get_transports(self):
            return [MyTransport]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from labflow.telemetry.protocols import TransportProtocol

PROJECT_NAME = "labflow"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class LabflowTelemetrySpec:
    """Hook specifications for telemetry transport plugins."""

    @hookspec
    def labflow_get_transports(self) -> list[type["TransportProtocol"]]:  # type: ignore[empty-body]
        """Return transport classes (not instances) implementing TransportProtocol."""
