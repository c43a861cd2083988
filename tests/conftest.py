# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/

Time Control:
- ``mock_clock`` drives flush and throttle timing (monotonic seconds)
- ``fixed_now`` is a controllable wall clock for timestamps and durations
"""

import os
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from labflow.attempts.registry import AttemptIdentityRegistry
from labflow.attempts.service import LaunchContextService
from labflow.contracts.config import RuntimeTelemetryConfig
from labflow.contracts.enums import LaunchSource
from labflow.contracts.launch import LaunchContext
from labflow.core.clock import MockClock

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Time
# =============================================================================

START = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


class FixedNow:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture
def fixed_now() -> FixedNow:
    return FixedNow()


@pytest.fixture
def mock_clock() -> MockClock:
    return MockClock(start=100.0)


# =============================================================================
# Attempts
# =============================================================================


@pytest.fixture
def registry(fixed_now: FixedNow) -> AttemptIdentityRegistry:
    return AttemptIdentityRegistry(now=fixed_now)


@pytest.fixture
def service(registry: AttemptIdentityRegistry, fixed_now: FixedNow) -> LaunchContextService:
    return LaunchContextService(registry, now=fixed_now)


def make_menu_context(registry: AttemptIdentityRegistry, lab_id: str = "lab-1", version: str = "v1") -> LaunchContext:
    """A lineage-valid menu context registered in ``registry``."""
    identity = registry.create_local_first(lab_id)
    return LaunchContext(
        launch_request_id=identity.launch_request_id,
        attempt_id=identity.attempt_id,
        idempotency_key=identity.idempotency_key,
        lab_id=lab_id,
        resolved_version_id=version,
        source=LaunchSource.MENU,
    )


@pytest.fixture
def context_factory(registry: AttemptIdentityRegistry) -> Callable[..., LaunchContext]:
    def _factory(lab_id: str = "lab-1", version: str = "v1") -> LaunchContext:
        return make_menu_context(registry, lab_id, version)

    return _factory


@pytest.fixture
def make_config() -> Callable[..., RuntimeTelemetryConfig]:
    """Default runtime config with selected fields replaced."""

    def _make(**overrides: Any) -> RuntimeTelemetryConfig:
        return replace(RuntimeTelemetryConfig.default(), **overrides)

    return _make
