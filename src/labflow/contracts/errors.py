"""Exceptions raised at configuration and parsing boundaries.

Steady-state operations (transitions, reconciliation, telemetry emission)
never raise: they return ``False``/``None`` and log instead. These exceptions
are only for setup-time and input-format problems.
"""


class TelemetryTransportError(Exception):
    """Raised when a transport cannot be discovered or configured.

    This is raised during transport setup (discovery/configure), NOT during
    delivery. ``send()`` must not raise; the pipeline isolates it anyway.

    Attributes:
        transport_name: Name of the transport that failed
        message: Human-readable error description
    """

    def __init__(self, transport_name: str, message: str) -> None:
        self.transport_name = transport_name
        self.message = message
        super().__init__(f"Transport '{transport_name}' failed: {message}")


class ReportFormatError(ValueError):
    """Raised when a transaction report payload is malformed.

    Attributes:
        field: Report field that failed to parse (dotted path)
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid transaction report field '{field}': {message}")
