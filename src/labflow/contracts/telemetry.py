"""Telemetry payload contracts.

These are the records the pipeline hands to transports. Field names in
``to_dict()`` output are the wire format consumed by the backend (a mix of
snake_case and the camelCase ``launchRequestId``, kept for compatibility).

Events are immutable (frozen) so a batch cannot change between being
removed from the pending buffer and being serialized.
"""

import json
from dataclasses import dataclass
from typing import Any

from labflow.contracts.enums import CompletionStatus

TELEMETRY_CONTRACT_VERSION = "1.1.0"

# Sentinel for "not applicable" numeric event fields
UNSET_PROGRESS = -1.0
UNSET_BYTES = -1


@dataclass(frozen=True, slots=True)
class StepEventData:
    """Event-specific detail block.

    ``progress_percent`` is a 0.0-1.0 fraction (or -1.0 when unset).
    """

    action: str
    step_guid: str = ""
    step_type: str = ""
    detail: str = ""
    progress_percent: float = UNSET_PROGRESS
    downloaded_bytes: int = UNSET_BYTES
    total_bytes: int = UNSET_BYTES
    critical: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "step_guid": self.step_guid,
            "step_type": self.step_type,
            "detail": self.detail,
            "progress_percent": self.progress_percent,
            "downloaded_bytes": self.downloaded_bytes,
            "total_bytes": self.total_bytes,
            "critical": self.critical,
        }


@dataclass(frozen=True, slots=True)
class StepEvent:
    """One sequenced event within an attempt.

    Attributes:
        sequence_number: Per-attempt counter starting at 1, gap-free
        idempotency_key: ``step:<attempt_id>:<sequence_number>``
        attempt_idempotency_key: The attempt-level key from the launch context
    """

    attempt_id: str
    launch_request_id: str
    attempt_idempotency_key: str
    idempotency_key: str
    lab_id: str
    event_type: str
    event_data: StepEventData
    client_timestamp: str
    sequence_number: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "launchRequestId": self.launch_request_id,
            "attempt_idempotency_key": self.attempt_idempotency_key,
            "idempotency_key": self.idempotency_key,
            "lab_id": self.lab_id,
            "event_type": self.event_type,
            "event_data": self.event_data.to_dict(),
            "client_timestamp": self.client_timestamp,
            "sequence_number": self.sequence_number,
        }


@dataclass(frozen=True, slots=True)
class AttemptSessionData:
    """Nested session block of an attempt summary."""

    completion_reason: str
    hints_used: int
    resets_used: int
    critical_error_count: int
    source: str = "unity_runtime"

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "completion_reason": self.completion_reason,
            "hints_used": self.hints_used,
            "resets_used": self.resets_used,
            "critical_error_count": self.critical_error_count,
        }


@dataclass(frozen=True, slots=True)
class AttemptSummary:
    """Terminal payload for one attempt. At most one is ever emitted per attempt_id."""

    attempt_id: str
    launch_request_id: str
    idempotency_key: str
    lab_id: str
    lab_version_id: str
    started_at: str
    completed_at: str
    duration_seconds: int
    completion_status: CompletionStatus
    critical_error_count: int
    hints_used: int
    resets_used: int
    is_offline_submission: bool
    device_type: str
    session_data: AttemptSessionData

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "launchRequestId": self.launch_request_id,
            "idempotency_key": self.idempotency_key,
            "lab_id": self.lab_id,
            "lab_version_id": self.lab_version_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "completion_status": self.completion_status.value,
            "critical_error_count": self.critical_error_count,
            "hints_used": self.hints_used,
            "resets_used": self.resets_used,
            "is_offline_submission": self.is_offline_submission,
            "device_type": self.device_type,
            "session_data": self.session_data.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class TelemetryBatch:
    """One unit of delivery to transports.

    Step-event batches carry no attempts; a terminal batch carries exactly one
    attempt summary and no step events.
    """

    attempts: tuple[AttemptSummary, ...] = ()
    step_events: tuple[StepEvent, ...] = ()
    contract_version: str = TELEMETRY_CONTRACT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "contractVersion": self.contract_version,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "step_events": [event.to_dict() for event in self.step_events],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class LifecycleData:
    """Data block of a launch lifecycle payload."""

    lab_id: str
    address_key: str
    resolved_version_id: str
    runtime_url: str
    session_duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "labId": self.lab_id,
            "addressKey": self.address_key,
            "resolvedVersionId": self.resolved_version_id,
            "runtimeUrl": self.runtime_url,
            "sessionDurationSeconds": self.session_duration_seconds,
            "durationMs": int(self.session_duration_seconds * 1000),
        }


@dataclass(frozen=True, slots=True)
class LifecyclePayload:
    """Launch lifecycle notification (``launch_resolved``, ``experience_abandoned``)."""

    launch_request_id: str
    attempt_id: str
    idempotency_key: str
    timestamp: str
    event: str
    data: LifecycleData
    contract_version: str = TELEMETRY_CONTRACT_VERSION

    def to_json(self) -> str:
        return json.dumps(
            {
                "contractVersion": self.contract_version,
                "launchRequestId": self.launch_request_id,
                "attempt_id": self.attempt_id,
                "idempotency_key": self.idempotency_key,
                "timestamp": self.timestamp,
                "event": self.event,
                "data": self.data.to_dict(),
            },
            separators=(",", ":"),
        )
