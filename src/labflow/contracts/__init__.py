"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core,
publishing, attempts or telemetry. Settings classes are NOT re-exported
here; import them from labflow.core.config.

Import patterns:
    from labflow.contracts import TransactionState, LaunchContext, StepEvent
    from labflow.core.config import LabflowSettings
"""

from labflow.contracts.config import INTERNAL_DEFAULTS, RuntimeTelemetryConfig, TransportConfig, get_internal_default
from labflow.contracts.enums import (
    AttemptPhase,
    CheckSeverity,
    CompletionStatus,
    LaunchSource,
    PublishPhase,
    StepEventType,
    TransactionSource,
    TransactionState,
)
from labflow.contracts.errors import ReportFormatError, TelemetryTransportError
from labflow.contracts.identity import AttemptIdentity
from labflow.contracts.launch import LAUNCH_CONTRACT_VERSION, LaunchContext, LaunchContextProvider, LineageValidator
from labflow.contracts.publishing import (
    SCHEMA_VERSION,
    ActorInfo,
    AddressablesInfo,
    ArtifactsInfo,
    BuildResult,
    CdnInfo,
    CheckEntry,
    ErrorEntry,
    LabInfo,
    PhaseResult,
    RuntimePolicyInfo,
    StateHistoryEntry,
    Transaction,
    ValidationResult,
    phase_from_error,
)
from labflow.contracts.scenario import NO_ACTIVE_STEP, ScenarioStepSource
from labflow.contracts.telemetry import (
    TELEMETRY_CONTRACT_VERSION,
    AttemptSessionData,
    AttemptSummary,
    LifecycleData,
    LifecyclePayload,
    StepEvent,
    StepEventData,
    TelemetryBatch,
)

__all__ = [
    "INTERNAL_DEFAULTS",
    "LAUNCH_CONTRACT_VERSION",
    "NO_ACTIVE_STEP",
    "SCHEMA_VERSION",
    "TELEMETRY_CONTRACT_VERSION",
    "ActorInfo",
    "AddressablesInfo",
    "ArtifactsInfo",
    "AttemptIdentity",
    "AttemptPhase",
    "AttemptSessionData",
    "AttemptSummary",
    "BuildResult",
    "CdnInfo",
    "CheckEntry",
    "CheckSeverity",
    "CompletionStatus",
    "ErrorEntry",
    "LabInfo",
    "LaunchContext",
    "LaunchContextProvider",
    "LaunchSource",
    "LifecycleData",
    "LifecyclePayload",
    "LineageValidator",
    "PhaseResult",
    "PublishPhase",
    "ReportFormatError",
    "RuntimePolicyInfo",
    "RuntimeTelemetryConfig",
    "ScenarioStepSource",
    "StateHistoryEntry",
    "StepEvent",
    "StepEventData",
    "StepEventType",
    "TelemetryBatch",
    "TelemetryTransportError",
    "Transaction",
    "TransactionSource",
    "TransactionState",
    "TransportConfig",
    "ValidationResult",
    "get_internal_default",
    "phase_from_error",
]
