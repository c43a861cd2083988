# tests/unit/telemetry/test_scenario_tracker.py
"""Tests for automatic step events derived from a scenario runner."""

from unittest.mock import MagicMock

import pytest

from labflow.contracts.scenario import NO_ACTIVE_STEP, ScenarioStepSource
from labflow.telemetry.scenario import ScenarioStepTracker


class FakeRunner:
    """Scenario runner exposing the step capability."""

    def __init__(self) -> None:
        self.current_step_index = NO_ACTIVE_STEP
        self.current_step_guid = ""
        self.current_step_kind = ""

    def go(self, index: int, guid: str = "", kind: str = "") -> None:
        self.current_step_index = index
        self.current_step_guid = guid
        self.current_step_kind = kind


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def pipeline() -> MagicMock:
    return MagicMock()


def test_fake_runner_satisfies_protocol(runner: FakeRunner) -> None:
    assert isinstance(runner, ScenarioStepSource)


class TestScenarioStepTracker:
    def test_first_observation_of_active_step(self, pipeline: MagicMock, runner: FakeRunner) -> None:
        runner.go(0, "g0", "intro")
        ScenarioStepTracker(pipeline, runner).poll()
        pipeline.track_interaction.assert_called_once_with("step_entered", "g0", "intro", "index=0")

    def test_nothing_before_scenario_starts(self, pipeline: MagicMock, runner: FakeRunner) -> None:
        tracker = ScenarioStepTracker(pipeline, runner)
        tracker.poll()
        tracker.poll()
        assert pipeline.method_calls == []

    def test_unchanged_index_is_quiet(self, pipeline: MagicMock, runner: FakeRunner) -> None:
        runner.go(0, "g0", "intro")
        tracker = ScenarioStepTracker(pipeline, runner)
        tracker.poll()
        tracker.poll()
        assert pipeline.track_interaction.call_count == 1

    def test_step_change_completes_previous_with_cached_identity(self, pipeline: MagicMock, runner: FakeRunner) -> None:
        tracker = ScenarioStepTracker(pipeline, runner)
        runner.go(0, "g0", "intro")
        tracker.poll()
        runner.go(1, "g1", "choice")
        tracker.poll()

        assert [c[0] for c in pipeline.method_calls] == ["track_interaction", "track_step_completed", "track_interaction"]
        pipeline.track_step_completed.assert_called_once_with("g0", "intro")
        assert pipeline.track_interaction.call_args.args == ("step_entered", "g1", "choice", "index=1")
        assert tracker.last_index == 1

    def test_finish_emits_completed_once(self, pipeline: MagicMock, runner: FakeRunner) -> None:
        tracker = ScenarioStepTracker(pipeline, runner)
        runner.go(0, "g0", "intro")
        tracker.poll()
        runner.go(NO_ACTIVE_STEP)
        tracker.poll()
        tracker.poll()

        pipeline.track_step_completed.assert_called_once_with("g0", "intro")
        pipeline.emit_attempt_completed.assert_called_once_with()

    def test_finish_without_completion(self, pipeline: MagicMock, runner: FakeRunner) -> None:
        tracker = ScenarioStepTracker(pipeline, runner, emit_completed_on_finish=False)
        runner.go(0, "g0")
        tracker.poll()
        runner.go(NO_ACTIVE_STEP)
        tracker.poll()
        pipeline.emit_attempt_completed.assert_not_called()

    def test_restart_after_finish_tracks_new_run(self, pipeline: MagicMock, runner: FakeRunner) -> None:
        tracker = ScenarioStepTracker(pipeline, runner)
        runner.go(0, "g0")
        tracker.poll()
        runner.go(NO_ACTIVE_STEP)
        tracker.poll()
        runner.go(0, "g0")
        tracker.poll()
        runner.go(NO_ACTIVE_STEP)
        tracker.poll()
        assert pipeline.emit_attempt_completed.call_count == 2
