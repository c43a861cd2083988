# tests/unit/telemetry/test_factory.py
"""Tests for transport discovery and pipeline construction."""

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from labflow.attempts.service import LaunchContextService
from labflow.contracts.config import RuntimeTelemetryConfig, TransportConfig
from labflow.contracts.errors import TelemetryTransportError
from labflow.telemetry.factory import create_telemetry_pipeline, create_transports, discover_transport_registry
from labflow.telemetry.hookspecs import hookimpl
from labflow.telemetry.pipeline import TelemetryEventPipeline
from labflow.telemetry.transports import ConsoleTransport, JsonlTransport, MemoryTransport


class NamedByInstance:
    """Transport without a class-level _name."""

    @property
    def name(self) -> str:
        return "by_instance"

    def configure(self, options: dict[str, Any]) -> None:
        pass

    def send(self, batch_json: str) -> None:
        pass

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class DuplicateMemory(MemoryTransport):
    _name = "memory"


class ExtraPlugin:
    @hookimpl
    def labflow_get_transports(self) -> list[type]:
        return [NamedByInstance]


class DuplicatePlugin:
    @hookimpl
    def labflow_get_transports(self) -> list[type]:
        return [DuplicateMemory]


class BrokenPlugin:
    @hookimpl
    def labflow_get_transports(self) -> list[type]:
        raise RuntimeError("plugin exploded")


class RecordingTransport(MemoryTransport):
    _name = "recording"
    closed_names: list[str] = []

    def close(self) -> None:
        super().close()
        RecordingTransport.closed_names.append(self.name)


class UncloseableTransport(MemoryTransport):
    _name = "uncloseable"

    def close(self) -> None:
        raise RuntimeError("close broke")


class RecordingPlugin:
    @hookimpl
    def labflow_get_transports(self) -> list[type]:
        return [RecordingTransport, UncloseableTransport]


class StringPlugin:
    @hookimpl
    def labflow_get_transports(self) -> str:
        return "memory"


def _config(*transports: TransportConfig, enabled: bool = True) -> RuntimeTelemetryConfig:
    from dataclasses import replace

    return replace(RuntimeTelemetryConfig.default(), enabled=enabled, transport_configs=transports)


class TestDiscovery:
    def test_builtins_registered(self) -> None:
        registry = discover_transport_registry()
        assert registry == {"console": ConsoleTransport, "jsonl": JsonlTransport, "memory": MemoryTransport}

    def test_extra_plugin_name_from_instance(self) -> None:
        assert discover_transport_registry([ExtraPlugin()])["by_instance"] is NamedByInstance

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(TelemetryTransportError, match="Duplicate"):
            discover_transport_registry([DuplicatePlugin()])

    def test_failing_hook(self) -> None:
        with pytest.raises(TelemetryTransportError, match="plugin exploded"):
            discover_transport_registry([BrokenPlugin()])

    def test_string_return_rejected(self) -> None:
        with pytest.raises(TelemetryTransportError, match="expected iterable"):
            discover_transport_registry([StringPlugin()])

    def test_same_plugin_twice_rejected(self) -> None:
        plugin = ExtraPlugin()
        with pytest.raises(TelemetryTransportError, match="Invalid telemetry transport plugin"):
            discover_transport_registry([plugin, plugin])


class TestCreateTransports:
    def test_configures_in_order(self, tmp_path: Path) -> None:
        transports = create_transports(
            _config(TransportConfig("memory"), TransportConfig("jsonl", {"path": str(tmp_path / "t.jsonl")}))
        )
        assert [t.name for t in transports] == ["memory", "jsonl"]
        for transport in transports:
            transport.close()

    def test_unknown_transport(self) -> None:
        with pytest.raises(TelemetryTransportError, match="Available transports"):
            create_transports(_config(TransportConfig("kafka")))

    def test_bad_options_propagate(self) -> None:
        with pytest.raises(TelemetryTransportError):
            create_transports(_config(TransportConfig("jsonl", {})))

    @pytest.mark.parametrize("failing", [TransportConfig("jsonl", {}), TransportConfig("kafka")])
    def test_configured_transports_closed_when_later_entry_fails(self, failing: TransportConfig) -> None:
        RecordingTransport.closed_names.clear()

        with pytest.raises(TelemetryTransportError):
            create_transports(_config(TransportConfig("recording"), failing), transport_plugins=[RecordingPlugin()])

        assert RecordingTransport.closed_names == ["recording"]

    def test_cleanup_close_failure_logged_and_original_error_kept(self) -> None:
        with patch("labflow.telemetry.factory.logger") as mock_logger, pytest.raises(TelemetryTransportError, match="path"):
            create_transports(
                _config(TransportConfig("uncloseable"), TransportConfig("jsonl", {})),
                transport_plugins=[RecordingPlugin()],
            )

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "Transport close failed"


class TestCreateTelemetryPipeline:
    def test_disabled_returns_none(self, service: LaunchContextService) -> None:
        assert create_telemetry_pipeline(_config(enabled=False), service, service.lineage_validator) is None

    def test_warns_without_transports(self, service: LaunchContextService) -> None:
        with patch("labflow.telemetry.factory.logger") as mock_logger:
            pipeline = create_telemetry_pipeline(_config(), service, service.lineage_validator)
        assert isinstance(pipeline, TelemetryEventPipeline)
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "telemetry_enabled_no_transports"

    def test_end_to_end(self, service: LaunchContextService, context_factory) -> None:
        pipeline = create_telemetry_pipeline(
            _config(TransportConfig("memory")),
            service,
            service.lineage_validator,
            transport_plugins=[ExtraPlugin()],
        )
        assert pipeline is not None
        service.set_launch_context(context_factory())
        pipeline.track_interaction("click")
        pipeline.emit_attempt_completed()
        assert pipeline.health_metrics["events_sent"] == 1
        assert pipeline.health_metrics["summaries_sent"] == 1
