"""Publish transaction contracts.

A Transaction is the audit record of one content publish: its descriptive
sub-records (actor, lab, addressables, CDN, artifacts, runtime policy), the
validation checks and errors collected along the way, and the append-only
state history written by ``labflow.publishing.state_machine``.

Invariant: ``state`` always equals ``state_history[-1].to_state``. Only the
state machine mutates ``state`` and ``state_history``.

Report JSON uses camelCase keys (see ``to_report_dict``); Python attributes
are snake_case.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final, TypeVar

from labflow.contracts.enums import CheckSeverity, PublishPhase, TransactionSource, TransactionState
from labflow.contracts.errors import ReportFormatError

SCHEMA_VERSION: Final = "publish_transaction.v1"

E = TypeVar("E", bound=StrEnum)


@dataclass
class ActorInfo:
    """Who (and which tooling) drove the transaction."""

    user_id: str = ""
    machine_id: str = ""
    editor_version: str = ""
    devkit_version: str = ""


@dataclass
class LabInfo:
    """Lab and version being published."""

    tenant_id: str = ""
    lab_id: str = ""
    lab_version_id: str = ""
    version_number: str = ""
    scenario_schema_version: str = ""


@dataclass
class AddressablesInfo:
    """Content-store build conventions used for the publish."""

    group_policy: str = "one_remote_group_per_lab"
    group_name: str = ""
    profile_name: str = ""
    build_target: str = ""
    catalog_mode: str = ""
    remote_load_path_template: str = ""


@dataclass
class CdnInfo:
    """CDN release the build was uploaded to."""

    provider: str = "ccd"
    project_id: str = ""
    environment: str = ""
    bucket_id: str = ""
    release_id: str = ""
    badge: str = ""
    entry_url: str = ""


@dataclass
class ArtifactsInfo:
    """Outputs of the build phase."""

    catalog_hash: str = ""
    content_hash: str = ""
    report_json_path: str = ""
    build_output_path: str = ""
    bundle_size_bytes: int = 0


@dataclass
class RuntimePolicyInfo:
    """Offline/cache launch policy shipped with the content."""

    allow_offline_cache_launch: bool = True
    allow_older_cached_same_lab: bool = True
    network_required_if_cache_miss: bool = True


@dataclass
class CheckEntry:
    """One validation check result."""

    code: str = ""
    severity: CheckSeverity = CheckSeverity.INFO
    message: str = ""
    scope: str = ""
    fix_hint: str = ""
    passed: bool = True


@dataclass
class ErrorEntry:
    """One failure recorded against a phase."""

    code: str = ""
    message: str = ""
    phase: str = ""
    retryable: bool = False
    terminal: bool = False
    details: str = ""


@dataclass(frozen=True, slots=True)
class StateHistoryEntry:
    """One applied transition.

    ``from_state`` is None only for the synthetic initialization entry.
    """

    from_state: TransactionState | None
    to_state: TransactionState
    at: str
    reason: str = ""
    actor: str = ""


@dataclass
class Transaction:
    """Audit record of a single publish transaction.

    Create through ``labflow.publishing.state_machine.create_draft`` so the
    history starts with the initialization entry.
    """

    transaction_id: str
    created_at: str
    updated_at: str
    idempotency_key: str = ""
    source: TransactionSource = TransactionSource.GUIDED_SETUP
    state: TransactionState = TransactionState.DRAFT
    schema_version: str = SCHEMA_VERSION
    actor: ActorInfo = field(default_factory=ActorInfo)
    lab: LabInfo = field(default_factory=LabInfo)
    addressables: AddressablesInfo = field(default_factory=AddressablesInfo)
    cdn: CdnInfo = field(default_factory=CdnInfo)
    artifacts: ArtifactsInfo = field(default_factory=ArtifactsInfo)
    runtime_policy: RuntimePolicyInfo = field(default_factory=RuntimePolicyInfo)
    checks: list[CheckEntry] = field(default_factory=list)
    errors: list[ErrorEntry] = field(default_factory=list)
    state_history: list[StateHistoryEntry] = field(default_factory=list)

    def to_report_dict(self) -> dict[str, Any]:
        """Render the full JSON-serializable report."""
        return {
            "schemaVersion": self.schema_version,
            "transactionId": self.transaction_id,
            "idempotencyKey": self.idempotency_key,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "source": self.source.value,
            "actor": {
                "userId": self.actor.user_id,
                "machineId": self.actor.machine_id,
                "editorVersion": self.actor.editor_version,
                "devkitVersion": self.actor.devkit_version,
            },
            "lab": {
                "tenantId": self.lab.tenant_id,
                "labId": self.lab.lab_id,
                "labVersionId": self.lab.lab_version_id,
                "versionNumber": self.lab.version_number,
                "scenarioSchemaVersion": self.lab.scenario_schema_version,
            },
            "addressables": {
                "groupPolicy": self.addressables.group_policy,
                "groupName": self.addressables.group_name,
                "profileName": self.addressables.profile_name,
                "buildTarget": self.addressables.build_target,
                "catalogMode": self.addressables.catalog_mode,
                "remoteLoadPathTemplate": self.addressables.remote_load_path_template,
            },
            "cdn": {
                "provider": self.cdn.provider,
                "projectId": self.cdn.project_id,
                "environment": self.cdn.environment,
                "bucketId": self.cdn.bucket_id,
                "releaseId": self.cdn.release_id,
                "badge": self.cdn.badge,
                "entryUrl": self.cdn.entry_url,
            },
            "artifacts": {
                "catalogHash": self.artifacts.catalog_hash,
                "contentHash": self.artifacts.content_hash,
                "reportJsonPath": self.artifacts.report_json_path,
                "buildOutputPath": self.artifacts.build_output_path,
                "bundleSizeBytes": self.artifacts.bundle_size_bytes,
            },
            "runtimePolicy": {
                "allowOfflineCacheLaunch": self.runtime_policy.allow_offline_cache_launch,
                "allowOlderCachedSameLab": self.runtime_policy.allow_older_cached_same_lab,
                "networkRequiredIfCacheMiss": self.runtime_policy.network_required_if_cache_miss,
            },
            "checks": [
                {
                    "code": check.code,
                    "severity": check.severity.value,
                    "message": check.message,
                    "scope": check.scope,
                    "fixHint": check.fix_hint,
                    "passed": check.passed,
                }
                for check in self.checks
            ],
            "errors": [
                {
                    "code": error.code,
                    "message": error.message,
                    "phase": error.phase,
                    "retryable": error.retryable,
                    "terminal": error.terminal,
                    "details": error.details,
                }
                for error in self.errors
            ],
            "state": self.state.value,
            "stateHistory": [
                {
                    "fromState": entry.from_state.value if entry.from_state is not None else "",
                    "toState": entry.to_state.value,
                    "at": entry.at,
                    "reason": entry.reason,
                    "actor": entry.actor,
                }
                for entry in self.state_history
            ],
        }

    @classmethod
    def from_report_dict(cls, data: Any) -> "Transaction":
        """Parse a report produced by ``to_report_dict``.

        Missing descriptive fields fall back to their defaults; identity,
        state and history fields are required.

        Raises:
            ReportFormatError: If a required field is missing or a value has
                the wrong type or an unknown enum value.
        """
        if not isinstance(data, dict):
            raise ReportFormatError("$", f"expected object, got {type(data).__name__}")

        actor = _section(data, "actor")
        lab = _section(data, "lab")
        addressables = _section(data, "addressables")
        cdn = _section(data, "cdn")
        artifacts = _section(data, "artifacts")
        policy = _section(data, "runtimePolicy")

        return cls(
            schema_version=_str(data, "schemaVersion", "$", default=SCHEMA_VERSION),
            transaction_id=_str(data, "transactionId", "$"),
            idempotency_key=_str(data, "idempotencyKey", "$", default=""),
            created_at=_str(data, "createdAt", "$"),
            updated_at=_str(data, "updatedAt", "$"),
            source=_enum(TransactionSource, _str(data, "source", "$", default=TransactionSource.GUIDED_SETUP.value), "source"),
            actor=ActorInfo(
                user_id=_str(actor, "userId", "actor", default=""),
                machine_id=_str(actor, "machineId", "actor", default=""),
                editor_version=_str(actor, "editorVersion", "actor", default=""),
                devkit_version=_str(actor, "devkitVersion", "actor", default=""),
            ),
            lab=LabInfo(
                tenant_id=_str(lab, "tenantId", "lab", default=""),
                lab_id=_str(lab, "labId", "lab", default=""),
                lab_version_id=_str(lab, "labVersionId", "lab", default=""),
                version_number=_str(lab, "versionNumber", "lab", default=""),
                scenario_schema_version=_str(lab, "scenarioSchemaVersion", "lab", default=""),
            ),
            addressables=AddressablesInfo(
                group_policy=_str(addressables, "groupPolicy", "addressables", default="one_remote_group_per_lab"),
                group_name=_str(addressables, "groupName", "addressables", default=""),
                profile_name=_str(addressables, "profileName", "addressables", default=""),
                build_target=_str(addressables, "buildTarget", "addressables", default=""),
                catalog_mode=_str(addressables, "catalogMode", "addressables", default=""),
                remote_load_path_template=_str(addressables, "remoteLoadPathTemplate", "addressables", default=""),
            ),
            cdn=CdnInfo(
                provider=_str(cdn, "provider", "cdn", default="ccd"),
                project_id=_str(cdn, "projectId", "cdn", default=""),
                environment=_str(cdn, "environment", "cdn", default=""),
                bucket_id=_str(cdn, "bucketId", "cdn", default=""),
                release_id=_str(cdn, "releaseId", "cdn", default=""),
                badge=_str(cdn, "badge", "cdn", default=""),
                entry_url=_str(cdn, "entryUrl", "cdn", default=""),
            ),
            artifacts=ArtifactsInfo(
                catalog_hash=_str(artifacts, "catalogHash", "artifacts", default=""),
                content_hash=_str(artifacts, "contentHash", "artifacts", default=""),
                report_json_path=_str(artifacts, "reportJsonPath", "artifacts", default=""),
                build_output_path=_str(artifacts, "buildOutputPath", "artifacts", default=""),
                bundle_size_bytes=_int(artifacts, "bundleSizeBytes", "artifacts", default=0),
            ),
            runtime_policy=RuntimePolicyInfo(
                allow_offline_cache_launch=_bool(policy, "allowOfflineCacheLaunch", "runtimePolicy", default=True),
                allow_older_cached_same_lab=_bool(policy, "allowOlderCachedSameLab", "runtimePolicy", default=True),
                network_required_if_cache_miss=_bool(policy, "networkRequiredIfCacheMiss", "runtimePolicy", default=True),
            ),
            checks=[
                CheckEntry(
                    code=_str(item, "code", f"checks[{i}]", default=""),
                    severity=_enum(
                        CheckSeverity,
                        _str(item, "severity", f"checks[{i}]", default=CheckSeverity.INFO.value),
                        f"checks[{i}].severity",
                    ),
                    message=_str(item, "message", f"checks[{i}]", default=""),
                    scope=_str(item, "scope", f"checks[{i}]", default=""),
                    fix_hint=_str(item, "fixHint", f"checks[{i}]", default=""),
                    passed=_bool(item, "passed", f"checks[{i}]", default=True),
                )
                for i, item in enumerate(_list(data, "checks"))
            ],
            errors=[
                ErrorEntry(
                    code=_str(item, "code", f"errors[{i}]", default=""),
                    message=_str(item, "message", f"errors[{i}]", default=""),
                    phase=_str(item, "phase", f"errors[{i}]", default=""),
                    retryable=_bool(item, "retryable", f"errors[{i}]", default=False),
                    terminal=_bool(item, "terminal", f"errors[{i}]", default=False),
                    details=_str(item, "details", f"errors[{i}]", default=""),
                )
                for i, item in enumerate(_list(data, "errors"))
            ],
            state=_enum(TransactionState, _str(data, "state", "$"), "state"),
            state_history=[_history_entry(item, i) for i, item in enumerate(_list(data, "stateHistory"))],
        )


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of the validation phase.

    Attributes:
        checks: Every check that ran, passing or not
        error_count: Number of blocking errors among the checks
        summary: Human-readable summary, copied into the error entry on failure
    """

    checks: tuple[CheckEntry, ...] = ()
    error_count: int = 0
    summary: str = ""


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Outcome of the build phase."""

    success: bool
    summary: str = ""
    output_path: str = ""
    catalog_hash: str = ""
    content_hash: str = ""
    bundle_size_bytes: int = 0
    retryable: bool = True


@dataclass(frozen=True, slots=True)
class PhaseResult:
    """Outcome of the publish, ingest, or activate phase.

    Attributes:
        success: Whether the phase reached its success state
        summary: Human-readable summary, copied into the error entry on failure
        retryable: Failures go to failed_retryable when True, else failed_terminal
        details: Extra diagnostic text for the error entry
    """

    success: bool
    summary: str = ""
    retryable: bool = True
    details: str = ""


def phase_from_error(entry: ErrorEntry) -> PublishPhase | None:
    """Return the recorded phase of an error entry, or None if unrecognized."""
    try:
        return PublishPhase(entry.phase)
    except ValueError:
        return None


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ReportFormatError(key, f"expected object, got {type(value).__name__}")
    return value


def _list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ReportFormatError(key, f"expected array, got {type(value).__name__}")
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ReportFormatError(f"{key}[{i}]", f"expected object, got {type(item).__name__}")
    return value


_MISSING: Any = object()


def _str(data: dict[str, Any], key: str, path: str, default: Any = _MISSING) -> str:
    if key not in data:
        if default is _MISSING:
            raise ReportFormatError(f"{path}.{key}", "required field is missing")
        return str(default)
    value = data[key]
    if not isinstance(value, str):
        raise ReportFormatError(f"{path}.{key}", f"expected string, got {type(value).__name__}")
    return value


def _bool(data: dict[str, Any], key: str, path: str, *, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ReportFormatError(f"{path}.{key}", f"expected boolean, got {type(value).__name__}")
    return value


def _int(data: dict[str, Any], key: str, path: str, *, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ReportFormatError(f"{path}.{key}", f"expected integer, got {type(value).__name__}")
    return value


def _enum(enum_type: type[E], value: str, path: str) -> E:
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ReportFormatError(path, f"unknown value {value!r} (expected one of: {allowed})") from None


def _history_entry(item: dict[str, Any], index: int) -> StateHistoryEntry:
    path = f"stateHistory[{index}]"
    raw_from = _str(item, "fromState", path, default="")
    return StateHistoryEntry(
        from_state=_enum(TransactionState, raw_from, f"{path}.fromState") if raw_from else None,
        to_state=_enum(TransactionState, _str(item, "toState", path), f"{path}.toState"),
        at=_str(item, "at", path, default=""),
        reason=_str(item, "reason", path, default=""),
        actor=_str(item, "actor", path, default=""),
    )
