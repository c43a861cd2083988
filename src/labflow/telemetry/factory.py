# src/labflow/telemetry/factory.py
"""Factory functions for creating a TelemetryEventPipeline from configuration.

This module is the glue between configuration (RuntimeTelemetryConfig) and
the runtime pipeline. It handles:
1. Discovering transport classes via telemetry pluggy hooks
2. Instantiating and configuring transports
3. Creating the TelemetryEventPipeline with configured transports

Usage:
    from labflow.contracts.config import RuntimeTelemetryConfig
    from labflow.telemetry.factory import create_telemetry_pipeline

    config = RuntimeTelemetryConfig.from_settings(settings.telemetry)
    pipeline = create_telemetry_pipeline(config, service, service.lineage_validator)
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from labflow.contracts.config import RuntimeTelemetryConfig
from labflow.contracts.errors import TelemetryTransportError
from labflow.contracts.launch import LaunchContextProvider, LineageValidator
from labflow.core.clock import DEFAULT_CLOCK, Clock, UtcNow, utc_now
from labflow.telemetry.hookspecs import PROJECT_NAME, LabflowTelemetrySpec
from labflow.telemetry.pipeline import TelemetryEventPipeline
from labflow.telemetry.protocols import TransportProtocol
from labflow.telemetry.transports import BuiltinTransportsPlugin

logger = structlog.get_logger(__name__)

_DISCOVERY = "telemetry_plugins"


def _resolve_transport_name(transport_class: type[TransportProtocol]) -> str:
    """Resolve the transport name from the class ``_name`` or a temporary instance.

    Raises:
        TelemetryTransportError: If the name is not a non-empty string or the
            class cannot be instantiated for name resolution
    """
    class_name = getattr(transport_class, "__name__", None)
    if class_name is None:
        raise TelemetryTransportError(_DISCOVERY, f"Invalid transport declaration without __name__: {transport_class!r}")

    class_dict = transport_class.__dict__
    if "_name" in class_dict:
        name_hint = class_dict["_name"]
        if type(name_hint) is str and name_hint != "":
            return name_hint
        raise TelemetryTransportError(
            class_name,
            f"Transport class attribute _name must be a non-empty string, got {name_hint!r}",
        )

    try:
        instance = transport_class()
    except Exception as e:
        raise TelemetryTransportError(class_name, f"Failed to instantiate transport class during discovery: {e}") from e

    resolved = instance.name
    if type(resolved) is not str or resolved == "":
        raise TelemetryTransportError(class_name, f"Transport name must be a non-empty string, got {resolved!r}")
    return resolved


def discover_transport_registry(
    transport_plugins: Iterable[Any] = (),
) -> dict[str, type[TransportProtocol]]:
    """Build the name -> class registry from built-in and caller-supplied plugins.

    Args:
        transport_plugins: Extra plugin objects implementing ``labflow_get_transports``

    Raises:
        TelemetryTransportError: On invalid plugins, invalid names or
            duplicate transport names
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(LabflowTelemetrySpec)

    for plugin in [BuiltinTransportsPlugin(), *list(transport_plugins)]:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # PluginValidationError: hookimpl signature mismatch
            # ValueError: plugin object or name already registered
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise TelemetryTransportError(
                _DISCOVERY,
                f"Invalid telemetry transport plugin {type(plugin).__name__}: {e}",
            ) from e

    registry: dict[str, type[TransportProtocol]] = {}
    for hook_impl in plugin_manager.hook.labflow_get_transports.get_hookimpls():
        hook_plugin: Any = hook_impl.plugin
        plugin_name = type(hook_plugin).__name__
        try:
            transports = hook_plugin.labflow_get_transports()
        except Exception as e:
            raise TelemetryTransportError(
                _DISCOVERY,
                f"Telemetry transport plugin {plugin_name} failed in labflow_get_transports: {e}",
            ) from e

        if transports is None or type(transports) in (str, bytes):
            raise TelemetryTransportError(
                _DISCOVERY,
                f"labflow_get_transports in plugin {plugin_name} returned {type(transports).__name__}; "
                "expected iterable of transport classes",
            )
        try:
            transport_iter = iter(transports)
        except TypeError as e:
            raise TelemetryTransportError(
                _DISCOVERY,
                f"labflow_get_transports in plugin {plugin_name} returned {type(transports).__name__}; "
                "expected iterable of transport classes",
            ) from e

        for transport_class in transport_iter:
            transport_name = _resolve_transport_name(transport_class)
            if transport_name in registry:
                raise TelemetryTransportError(
                    transport_name,
                    f"Duplicate telemetry transport name '{transport_name}' discovered: "
                    f"{registry[transport_name].__name__} and {transport_class.__name__}",
                )
            registry[transport_name] = transport_class

    return registry


def create_transports(
    config: RuntimeTelemetryConfig,
    *,
    transport_plugins: Iterable[Any] = (),
) -> list[TransportProtocol]:
    """Instantiate and configure every transport named in ``config.transport_configs``.

    Transports configured before a failing entry are closed before the error
    propagates.

    Raises:
        TelemetryTransportError: Unknown transport name, or configure() rejected its options
    """
    registry = discover_transport_registry(transport_plugins)

    transports: list[TransportProtocol] = []
    try:
        for transport_config in config.transport_configs:
            try:
                transport_class = registry[transport_config.name]
            except KeyError:
                available = sorted(registry.keys())
                raise TelemetryTransportError(
                    transport_name=transport_config.name,
                    message=f"Unknown transport. Available transports: {available}",
                ) from None

            transport = transport_class()
            transport.configure(transport_config.options)
            transports.append(transport)
            logger.debug(
                "Transport configured",
                transport=transport_config.name,
                options_keys=list(transport_config.options.keys()),
            )
    except Exception:
        _close_quietly(transports)
        raise
    return transports


def _close_quietly(transports: list[TransportProtocol]) -> None:
    for transport in transports:
        try:
            transport.close()
        except Exception as e:
            logger.warning("Transport close failed", transport=transport.name, error=str(e))


def create_telemetry_pipeline(
    config: RuntimeTelemetryConfig,
    context_provider: LaunchContextProvider,
    lineage_validator: LineageValidator,
    *,
    transport_plugins: Iterable[Any] = (),
    clock: Clock = DEFAULT_CLOCK,
    utc_now: UtcNow = utc_now,
) -> TelemetryEventPipeline | None:
    """Create a TelemetryEventPipeline from runtime configuration.

    Returns:
        The pipeline, or None when telemetry is disabled

    Raises:
        TelemetryTransportError: If discovery fails, an unknown transport is
            configured, or a transport rejects its options
    """
    if not config.enabled:
        logger.debug("Telemetry disabled", reason="config.enabled=False")
        return None

    transports = create_transports(config, transport_plugins=transport_plugins)
    if not transports:
        logger.warning("telemetry_enabled_no_transports", message="Telemetry enabled but no transports configured")

    return TelemetryEventPipeline(
        config,
        context_provider,
        lineage_validator,
        transports,
        clock=clock,
        utc_now=utc_now,
    )
