"""All status codes, states, and kinds used across subsystem boundaries.

String values are part of the wire format (transaction reports and telemetry
batches). Never rename a value without bumping the relevant schema version.
"""

from enum import StrEnum


class TransactionState(StrEnum):
    """Lifecycle state of a publish transaction.

    Stored in transaction reports (``state`` and ``stateHistory[].toState``).
    """

    DRAFT = "draft"
    VALIDATING = "validating"
    VALIDATED = "validated"
    BUILD_REQUESTED = "build_requested"
    BUILDING = "building"
    BUILT = "built"
    PUBLISH_REQUESTED = "publish_requested"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    INGEST_REQUESTED = "ingest_requested"
    INGESTING = "ingesting"
    INGESTED = "ingested"
    ACTIVATE_REQUESTED = "activate_requested"
    ACTIVATED = "activated"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"
    CANCELLED = "cancelled"


class TransactionSource(StrEnum):
    """Which authoring flow created a publish transaction."""

    GUIDED_SETUP = "devkit_guided_setup"
    HIDDEN_BUILD = "devkit_hidden_build"


class PublishPhase(StrEnum):
    """Phase recorded on transaction error entries.

    Retryable phases map back onto a ``*_requested`` state when a failed
    transaction is resumed.
    """

    VALIDATE = "validate"
    BUILD = "build"
    PUBLISH = "publish"
    INGEST = "ingest"
    ACTIVATE = "activate"


class CheckSeverity(StrEnum):
    """Severity of a validation check entry."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class CompletionStatus(StrEnum):
    """Terminal status carried by an attempt summary.

    Values:
        COMPLETED: Scenario reached its end
        FAILED: Runtime failure ended the attempt
        ABANDONED: User left, or the status was not recognized
        IN_PROGRESS: Summary sent while the attempt continues elsewhere
    """

    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"
    IN_PROGRESS = "in_progress"


class LaunchSource(StrEnum):
    """Where a launch context came from."""

    BRIDGE = "bridge"
    MENU = "menu"
    DIRECT = "direct"


class AttemptPhase(StrEnum):
    """Pipeline-side lifecycle of a single attempt.

    UNINITIALIZED -> ACTIVE -> FINALIZED. There is no way back out of
    FINALIZED.
    """

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    FINALIZED = "finalized"


class StepEventType(StrEnum):
    """Top-level ``event_type`` values for step events."""

    INTERACTION = "interaction"
    STEP_COMPLETED = "step_completed"
    HINT_USED = "hint_used"
    RESET = "reset"
    ERROR = "error"
