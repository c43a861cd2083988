# src/labflow/telemetry/protocols.py
"""Protocol definition for telemetry transports.

Transports ship serialized batches to wherever the host wants them
(a native bridge, a file, an HTTP client). Delivery, retry and backoff are
the transport's responsibility; the pipeline is fire-and-forget.
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TransportProtocol(Protocol):
    """Protocol for telemetry transports.

    Lifecycle:
        1. Discovery: labflow_get_transports hook returns transport classes
        2. Instantiation: the factory creates instances with no arguments
        3. Configuration: configure() called with transport-specific options
        4. Operation: send() called once per batch (should not raise)
        5. Shutdown: flush() then close() called by the pipeline

    Error handling:
        - configure() MUST raise TelemetryTransportError on invalid options
        - send() should not raise; the pipeline logs and counts it if it does
        - close() MUST be idempotent
    """

    @property
    def name(self) -> str:
        """Transport name used in ``telemetry.transports[].name``."""
        ...

    def configure(self, options: dict[str, Any]) -> None:
        """Raises TelemetryTransportError if options are invalid."""
        ...

    def send(self, batch_json: str) -> None:
        """Deliver one serialized batch (``TelemetryBatch.to_json()`` or a lifecycle payload)."""
        ...

    def flush(self) -> None:
        ...

    def close(self) -> None:
        ...
