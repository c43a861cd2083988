"""Runtime configuration for the telemetry pipeline.

Settings (``labflow.core.config``) are what users write in YAML; the frozen
dataclasses here are what runtime code reads. ``from_settings()`` is the only
mapping between them, so every user-facing knob has exactly one origin.

INTERNAL_DEFAULTS documents values that are hardcoded in runtime code and
deliberately NOT exposed in settings.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from labflow.core.config import TelemetrySettings

INTERNAL_DEFAULTS: Final[dict[str, dict[str, int | float | bool | str]]] = {
    "telemetry": {
        # Lower bound for the periodic flush interval; smaller settings are raised to it
        "min_flush_interval_seconds": 0.5,
        # Overflow warnings are logged once per this many dropped events
        "drop_warning_every": 100,
    },
    "registry": {
        # Prefix of attempt-level idempotency keys
        "attempt_key_prefix": "attempt",
    },
}


def get_internal_default(subsystem: str, name: str) -> int | float | bool | str:
    """Get an internal default value.

    Raises:
        KeyError: If subsystem or name is not registered
    """
    return INTERNAL_DEFAULTS[subsystem][name]


@dataclass(frozen=True, slots=True)
class TransportConfig:
    """Configuration for a single telemetry transport.

    Example YAML that produces TransportConfig instances:
        telemetry:
          transports:
            - name: console
              options:
                format: pretty
            - name: jsonl
              options:
                path: ./telemetry.jsonl
    """

    name: str
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("transport name cannot be empty")


@dataclass(frozen=True, slots=True)
class RuntimeTelemetryConfig:
    """Runtime configuration for step-event and attempt-summary emission.

    Field Origins (all from TelemetrySettings):
        - enabled, auto_flush, max_events_per_batch, max_pending_events,
          progress_emit_interval_seconds, progress_emit_delta, device_type,
          log_payloads: direct mapping
        - flush_interval_seconds: raised to the internal minimum
        - transport_configs: TelemetrySettings.transports as TransportConfig tuple
    """

    enabled: bool
    auto_flush: bool
    flush_interval_seconds: float
    max_events_per_batch: int
    max_pending_events: int
    progress_emit_interval_seconds: float
    progress_emit_delta: float
    device_type: str
    log_payloads: bool
    transport_configs: tuple[TransportConfig, ...]

    @classmethod
    def default(cls) -> "RuntimeTelemetryConfig":
        """Factory for the default configuration (enabled, no transports)."""
        return cls(
            enabled=True,
            auto_flush=True,
            flush_interval_seconds=3.0,
            max_events_per_batch=10,
            max_pending_events=10_000,
            progress_emit_interval_seconds=0.5,
            progress_emit_delta=0.05,
            device_type="unity_runtime",
            log_payloads=False,
            transport_configs=(),
        )

    @classmethod
    def from_settings(cls, settings: "TelemetrySettings") -> "RuntimeTelemetryConfig":
        """Factory from the validated TelemetrySettings model."""
        min_interval = float(get_internal_default("telemetry", "min_flush_interval_seconds"))
        return cls(
            enabled=settings.enabled,
            auto_flush=settings.auto_flush,
            flush_interval_seconds=max(min_interval, settings.flush_interval_seconds),
            max_events_per_batch=settings.max_events_per_batch,
            max_pending_events=settings.max_pending_events,
            progress_emit_interval_seconds=settings.progress_emit_interval_seconds,
            progress_emit_delta=settings.progress_emit_delta,
            device_type=settings.device_type.strip() or "unity_runtime",
            log_payloads=settings.log_payloads,
            transport_configs=tuple(TransportConfig(name=t.name, options=dict(t.options)) for t in settings.transports),
        )
