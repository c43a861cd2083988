# src/labflow/core/config.py
"""
Configuration schema and loading for labflow.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction. Runtime code reads the
frozen dataclasses in labflow.contracts.config, built via ``from_settings()``.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from labflow.contracts.enums import TransactionSource

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class TransportSettings(BaseModel):
    """One telemetry transport entry.

    Example YAML:
        telemetry:
          transports:
            - name: jsonl
              options:
                path: ./telemetry.jsonl
    """

    model_config = {"frozen": True}

    name: str = Field(min_length=1, description="Transport plugin name (console, jsonl, memory, or a plugin)")
    options: dict[str, Any] = Field(default_factory=dict, description="Transport-specific options")


class TelemetrySettings(BaseModel):
    """Step-event and attempt-summary emission.

    Example YAML:
        telemetry:
          flush_interval_seconds: 3.0
          max_events_per_batch: 10
          transports:
            - name: console
              options:
                format: pretty
    """

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Emit telemetry at all")
    auto_flush: bool = Field(default=True, description="Flush pending events from tick() once the interval elapses")
    flush_interval_seconds: float = Field(default=3.0, ge=0.5, description="Seconds between periodic flushes")
    max_events_per_batch: int = Field(default=10, gt=0, description="Batch cap; reaching it flushes inline")
    max_pending_events: int = Field(default=10_000, gt=0, description="Pending queue bound (oldest dropped on overflow)")
    progress_emit_interval_seconds: float = Field(default=0.5, ge=0, description="Minimum seconds between progress events")
    progress_emit_delta: float = Field(default=0.05, ge=0, le=1, description="Progress change that bypasses the interval")
    device_type: str = Field(default="unity_runtime", description="device_type stamped on attempt summaries")
    log_payloads: bool = Field(default=False, description="Log every batch JSON at debug level")
    transports: list[TransportSettings] = Field(default_factory=list, description="Transports batches fan out to")


class PublishingSettings(BaseModel):
    """Publish transaction defaults."""

    model_config = {"frozen": True}

    tenant_id: str = Field(default="", description="Tenant used in publish idempotency keys")
    default_source: TransactionSource = Field(
        default=TransactionSource.GUIDED_SETUP,
        description="Source recorded on new transactions",
    )
    reports_dir: Path = Field(default=Path("./publish-reports"), description="Where transaction reports are written")


class LoggingSettings(BaseModel):
    """Log output configuration."""

    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Render JSON lines instead of console output")

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class LabflowSettings(BaseModel):
    """Top-level labflow configuration. Every section is optional."""

    model_config = {"frozen": True}

    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings, description="Telemetry pipeline")
    publishing: PublishingSettings = Field(default_factory=PublishingSettings, description="Publish transactions")
    logging: LoggingSettings = Field(default_factory=LoggingSettings, description="Logging")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        if isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_expand_value(item) for item in value]
        return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    # Dynaconf upper-cases keys at every level it touched
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path) -> LabflowSettings:
    """Load settings from YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (LABFLOW_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: LABFLOW_TELEMETRY__MAX_EVENTS_PER_BATCH for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="LABFLOW",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)

    return LabflowSettings(**raw_config)
