"""Launch context contracts.

A LaunchContext carries the lineage (launch request id, attempt id,
idempotency key, lab id) plus the resolved content version for the attempt
currently running. The telemetry pipeline consumes it through the
LaunchContextProvider and LineageValidator protocols below, so any host can
supply its own implementations.
"""

from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable

from labflow.contracts.enums import LaunchSource

LAUNCH_CONTRACT_VERSION = "1.1.0"


@dataclass
class LaunchContext:
    """Everything known about the current launch.

    Empty strings mean "not provided". Use ``normalized()`` before comparing
    values from external payloads.
    """

    launch_request_id: str = ""
    attempt_id: str = ""
    idempotency_key: str = ""
    lab_id: str = ""
    address_key: str = ""
    resolved_version_id: str = ""
    runtime_url: str = ""
    launched_from_cache: bool = False
    allow_offline_cache_launch: bool = False
    allow_older_cached_same_lab: bool = False
    network_required_if_cache_miss: bool = False
    source: LaunchSource = LaunchSource.DIRECT
    requested_at: str = ""
    contract_version: str = LAUNCH_CONTRACT_VERSION

    def normalized(self) -> "LaunchContext":
        """Return a copy with every string field trimmed."""
        return replace(
            self,
            launch_request_id=self.launch_request_id.strip(),
            attempt_id=self.attempt_id.strip(),
            idempotency_key=self.idempotency_key.strip(),
            lab_id=self.lab_id.strip(),
            address_key=self.address_key.strip(),
            resolved_version_id=self.resolved_version_id.strip(),
            runtime_url=self.runtime_url.strip(),
            requested_at=self.requested_at.strip(),
            contract_version=self.contract_version.strip() or LAUNCH_CONTRACT_VERSION,
        )


@runtime_checkable
class LaunchContextProvider(Protocol):
    """Source of the launch context for the attempt currently running."""

    def try_get_current_context(self) -> LaunchContext | None:
        """Return the current context, or None when no launch is active."""
        ...


@runtime_checkable
class LineageValidator(Protocol):
    """Checks that a context's identifiers are present and mutually consistent."""

    def rejection_reason(
        self,
        context: LaunchContext | None,
        *,
        require_resolved_version_id: bool = False,
    ) -> str | None:
        """Return None when the context is valid, else a human-readable reason.

        Args:
            context: Context to check (None is always rejected)
            require_resolved_version_id: Also demand a resolved content version,
                needed before a terminal summary can be attributed
        """
        ...
