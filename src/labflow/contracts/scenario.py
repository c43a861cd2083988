"""Capability interface for scenario runners.

Runners implement this directly so step telemetry never has to inspect a
runner's internals.
"""

from typing import Protocol, runtime_checkable

NO_ACTIVE_STEP = -1


@runtime_checkable
class ScenarioStepSource(Protocol):
    """Exposes the step a scenario runner is currently on.

    ``current_step_index`` is ``NO_ACTIVE_STEP`` (-1) before the first step
    and after the last one.
    """

    @property
    def current_step_index(self) -> int: ...

    @property
    def current_step_guid(self) -> str: ...

    @property
    def current_step_kind(self) -> str: ...
