"""Attempt telemetry: step events, batching and attempt summaries.

Usage:
    from labflow.telemetry import create_telemetry_pipeline

    pipeline = create_telemetry_pipeline(config, service, service.lineage_validator)
    if pipeline is not None:
        pipeline.track_interaction("grab", step_id="s1")
        pipeline.tick()
"""

from labflow.telemetry.buffer import BoundedBuffer
from labflow.telemetry.factory import create_telemetry_pipeline, create_transports, discover_transport_registry
from labflow.telemetry.hookspecs import hookimpl
from labflow.telemetry.lifecycle import LaunchLifecycleReporter, build_lifecycle_payload
from labflow.telemetry.pipeline import TelemetryEventPipeline
from labflow.telemetry.protocols import TransportProtocol
from labflow.telemetry.scenario import ScenarioStepTracker

__all__ = [
    "BoundedBuffer",
    "LaunchLifecycleReporter",
    "ScenarioStepTracker",
    "TelemetryEventPipeline",
    "TransportProtocol",
    "build_lifecycle_payload",
    "create_telemetry_pipeline",
    "create_transports",
    "discover_transport_registry",
    "hookimpl",
]
