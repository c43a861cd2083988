# src/labflow/telemetry/scenario.py
"""Automatic step telemetry for scenario runners.

The host calls ``poll()`` once per tick; the tracker turns changes of the
runner's current step index into ``step_entered`` / ``step_completed``
events and, optionally, a completed summary when the scenario finishes.
"""

import structlog

from labflow.contracts.scenario import NO_ACTIVE_STEP, ScenarioStepSource
from labflow.telemetry.pipeline import TelemetryEventPipeline

logger = structlog.get_logger(__name__)

STEP_ENTERED = "step_entered"


class ScenarioStepTracker:
    """Derives step events from a ScenarioStepSource.

    Guid and kind of a step are cached when it is entered, because the runner
    already reports the next step by the time the change is observed.
    """

    def __init__(
        self,
        pipeline: TelemetryEventPipeline,
        source: ScenarioStepSource,
        emit_completed_on_finish: bool = True,
    ) -> None:
        self._pipeline = pipeline
        self._source = source
        self._emit_completed_on_finish = emit_completed_on_finish
        self._last_index = NO_ACTIVE_STEP
        self._last_guid = ""
        self._last_kind = ""
        self._initialized = False
        self._run_observed = False

    @property
    def last_index(self) -> int:
        return self._last_index

    def poll(self) -> None:
        index = self._source.current_step_index

        if not self._initialized:
            self._initialized = True
            self._last_index = index
            if index >= 0:
                self._enter(index)
            return

        if index == self._last_index:
            return

        if self._last_index >= 0:
            self._pipeline.track_step_completed(self._last_guid, self._last_kind)

        self._last_index = index
        if index >= 0:
            self._enter(index)
            return

        if self._run_observed and self._emit_completed_on_finish:
            logger.debug("Scenario finished", last_step_guid=self._last_guid)
            self._pipeline.emit_attempt_completed()
            self._run_observed = False

    def _enter(self, index: int) -> None:
        self._last_guid = self._source.current_step_guid or ""
        self._last_kind = self._source.current_step_kind or ""
        self._run_observed = True
        self._pipeline.track_interaction(STEP_ENTERED, self._last_guid, self._last_kind, f"index={index}")
