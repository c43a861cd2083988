"""Drive publish transactions from phase outcomes and persist their reports.

TransactionReporter is the only caller of the state machine in normal use.
Each ``apply_*`` method maps a phase outcome onto one or two transitions and
records the matching error entry on failure. Rejected transitions are logged
here (the state machine itself stays silent) and the transaction is left as
it was.
"""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from labflow.contracts.enums import CheckSeverity, PublishPhase, TransactionSource, TransactionState
from labflow.contracts.errors import ReportFormatError
from labflow.contracts.publishing import (
    ActorInfo,
    BuildResult,
    ErrorEntry,
    PhaseResult,
    RuntimePolicyInfo,
    Transaction,
    ValidationResult,
    phase_from_error,
)
from labflow.core.clock import UtcNow, utc_now
from labflow.core.config import PublishingSettings
from labflow.core.idempotency import build_key
from labflow.publishing.state_machine import REQUESTED_STATE_BY_PHASE, can_transition, create_draft, try_transition

logger = structlog.get_logger(__name__)

S = TransactionState

_UNSAFE_FILE_CHARS = re.compile(r"[^a-zA-Z0-9\-_]+")

# Content hash used in the idempotency key until a build produces the real one
PENDING_CONTENT_HASH = "pending"

DEFAULT_REPORTS_DIR = Path("./publish-reports")


class TransactionReporter:
    """Applies phase outcomes to transactions.

    Example:
        reporter = TransactionReporter(tenant_id="acme")
        tx = reporter.create_draft(TransactionSource.GUIDED_SETUP, "alice", "lab-1", "v3")
        reporter.apply_validation(tx, ValidationResult(), "alice")
        reporter.apply_build_start(tx, "alice")
        reporter.apply_build_result(tx, BuildResult(success=True, content_hash="abc"), "alice")
        reporter.save_report(tx)           # into reports_dir
    """

    def __init__(
        self,
        *,
        tenant_id: str = "",
        default_source: TransactionSource = TransactionSource.GUIDED_SETUP,
        reports_dir: Path = DEFAULT_REPORTS_DIR,
        actor_info: ActorInfo | None = None,
        now: UtcNow = utc_now,
    ) -> None:
        self._tenant_id = tenant_id
        self._default_source = default_source
        self._reports_dir = reports_dir
        self._actor_info = actor_info
        self._now = now

    @classmethod
    def from_settings(
        cls,
        settings: PublishingSettings,
        *,
        actor_info: ActorInfo | None = None,
        now: UtcNow = utc_now,
    ) -> "TransactionReporter":
        return cls(
            tenant_id=settings.tenant_id,
            default_source=settings.default_source,
            reports_dir=settings.reports_dir,
            actor_info=actor_info,
            now=now,
        )

    @property
    def reports_dir(self) -> Path:
        return self._reports_dir
    def _transition(self, transaction: Transaction, to_state: TransactionState, reason: str, actor: str | None) -> bool:
        from_state = transaction.state
        if try_transition(transaction, to_state, reason, actor, now=self._now):
            logger.debug(
                "Transaction transition applied",
                transaction_id=transaction.transaction_id,
                from_state=from_state,
                to_state=to_state,
                reason=reason,
            )
            return True
        self._log_rejected(transaction, to_state, reason)
        return False

    def _log_rejected(self, transaction: Transaction, to_state: TransactionState, reason: str) -> None:
        logger.warning(
            "Transaction transition rejected",
            transaction_id=transaction.transaction_id,
            from_state=transaction.state,
            to_state=to_state,
            reason=reason,
        )

    def _refresh_key(self, transaction: Transaction, content_hash: str) -> None:
        transaction.idempotency_key = build_key(
            transaction.lab.tenant_id,
            transaction.lab.lab_id,
            transaction.lab.lab_version_id,
            content_hash,
        )

    def create_draft(
        self,
        source: TransactionSource | str | None,
        actor: str | None,
        lab_id: str,
        lab_version_id: str,
        tenant_id: str | None = None,
        runtime_policy: RuntimePolicyInfo | None = None,
    ) -> Transaction:
        """Create a draft carrying the lab reference and a provisional idempotency key.

        A missing or blank source falls back to the reporter's default source.
        """
        if source is None or not str(source).strip():
            source = self._default_source
        transaction = create_draft(source, actor, now=self._now)
        if self._actor_info is not None:
            transaction.actor = ActorInfo(
                user_id=self._actor_info.user_id,
                machine_id=self._actor_info.machine_id,
                editor_version=self._actor_info.editor_version,
                devkit_version=self._actor_info.devkit_version,
            )
        transaction.lab.tenant_id = (tenant_id if tenant_id is not None else self._tenant_id).strip()
        transaction.lab.lab_id = lab_id.strip()
        transaction.lab.lab_version_id = lab_version_id.strip()
        if runtime_policy is not None:
            transaction.runtime_policy = runtime_policy
        self._refresh_key(transaction, PENDING_CONTENT_HASH)
        return transaction

    def apply_validation(self, transaction: Transaction, validation: ValidationResult, actor: str | None) -> bool:
        """Record validation checks; blocking errors end the transaction.

        Returns:
            True when the transaction ended in ``validated``
        """
        if not self._transition(transaction, S.VALIDATING, "validation_started", actor):
            return False

        transaction.checks = list(validation.checks)
        if validation.error_count > 0:
            if self._transition(transaction, S.FAILED_TERMINAL, "validation_failed", actor):
                transaction.errors.append(
                    ErrorEntry(
                        code="VALIDATION_FAILED",
                        message=validation.summary,
                        phase=PublishPhase.VALIDATE.value,
                        retryable=False,
                        terminal=True,
                    )
                )
            return False

        return self._transition(transaction, S.VALIDATED, "validation_passed", actor)

    def _apply_start(
        self,
        transaction: Transaction,
        phase: PublishPhase,
        in_progress: TransactionState | None,
        actor: str | None,
    ) -> bool:
        requested = REQUESTED_STATE_BY_PHASE[phase]
        if not self._transition(transaction, requested, f"{phase.value}_requested", actor):
            return False
        if in_progress is None:
            return True
        return self._transition(transaction, in_progress, f"{phase.value}_started", actor)

    def _apply_result(
        self,
        transaction: Transaction,
        phase: PublishPhase,
        success_state: TransactionState,
        *,
        success: bool,
        retryable: bool,
        summary: str,
        details: str,
        actor: str | None,
    ) -> bool:
        if success:
            return self._transition(transaction, success_state, f"{phase.value}_succeeded", actor)

        failure_state = S.FAILED_RETRYABLE if retryable else S.FAILED_TERMINAL
        if self._transition(transaction, failure_state, f"{phase.value}_failed", actor):
            # Recorded only when the failure transition applied
            transaction.errors.append(
                ErrorEntry(
                    code=f"{phase.value.upper()}_FAILED",
                    message=summary,
                    phase=phase.value,
                    retryable=retryable,
                    terminal=not retryable,
                    details=details,
                )
            )
        return False

    def apply_build_start(self, transaction: Transaction, actor: str | None) -> bool:
        return self._apply_start(transaction, PublishPhase.BUILD, S.BUILDING, actor)

    def apply_build_result(self, transaction: Transaction, build: BuildResult, actor: str | None) -> bool:
        """Record build artifacts and re-key the transaction from the real content hash.

        Artifacts and key stay untouched when the outcome's transition is rejected.
        """
        if build.success:
            target, reason = S.BUILT, "build_succeeded"
        else:
            target = S.FAILED_RETRYABLE if build.retryable else S.FAILED_TERMINAL
            reason = "build_failed"
        if not can_transition(transaction.state, target):
            self._log_rejected(transaction, target, reason)
            return False

        transaction.artifacts.build_output_path = build.output_path.strip()
        transaction.artifacts.catalog_hash = build.catalog_hash.strip()
        transaction.artifacts.content_hash = build.content_hash.strip()
        transaction.artifacts.bundle_size_bytes = build.bundle_size_bytes
        self._refresh_key(transaction, transaction.artifacts.content_hash)

        return self._apply_result(
            transaction,
            PublishPhase.BUILD,
            S.BUILT,
            success=build.success,
            retryable=build.retryable,
            summary=build.summary,
            details=build.output_path,
            actor=actor,
        )

    def apply_publish_start(self, transaction: Transaction, actor: str | None) -> bool:
        return self._apply_start(transaction, PublishPhase.PUBLISH, S.PUBLISHING, actor)

    def apply_publish_result(self, transaction: Transaction, result: PhaseResult, actor: str | None) -> bool:
        return self._apply_result(
            transaction,
            PublishPhase.PUBLISH,
            S.PUBLISHED,
            success=result.success,
            retryable=result.retryable,
            summary=result.summary,
            details=result.details,
            actor=actor,
        )

    def apply_ingest_start(self, transaction: Transaction, actor: str | None) -> bool:
        return self._apply_start(transaction, PublishPhase.INGEST, S.INGESTING, actor)

    def apply_ingest_result(self, transaction: Transaction, result: PhaseResult, actor: str | None) -> bool:
        return self._apply_result(
            transaction,
            PublishPhase.INGEST,
            S.INGESTED,
            success=result.success,
            retryable=result.retryable,
            summary=result.summary,
            details=result.details,
            actor=actor,
        )

    def apply_activate_start(self, transaction: Transaction, actor: str | None) -> bool:
        return self._apply_start(transaction, PublishPhase.ACTIVATE, None, actor)

    def apply_activate_result(self, transaction: Transaction, result: PhaseResult, actor: str | None) -> bool:
        return self._apply_result(
            transaction,
            PublishPhase.ACTIVATE,
            S.ACTIVATED,
            success=result.success,
            retryable=result.retryable,
            summary=result.summary,
            details=result.details,
            actor=actor,
        )

    def resume(self, transaction: Transaction, actor: str | None) -> bool:
        """Re-enter the requested state of the most recent retryable failure.

        Only valid from ``failed_retryable``. The phase comes from the newest
        retryable error entry.
        """
        if transaction.state is not S.FAILED_RETRYABLE:
            logger.warning(
                "Resume requested for transaction that is not retryable",
                transaction_id=transaction.transaction_id,
                state=transaction.state,
            )
            return False

        for entry in reversed(transaction.errors):
            phase = phase_from_error(entry)
            if entry.retryable and phase in REQUESTED_STATE_BY_PHASE:
                return self._transition(transaction, REQUESTED_STATE_BY_PHASE[phase], f"{phase.value}_retry_requested", actor)

        logger.warning("No retryable phase recorded for transaction", transaction_id=transaction.transaction_id)
        return False

    def cancel(self, transaction: Transaction, actor: str | None, reason: str = "cancelled") -> bool:
        return self._transition(transaction, S.CANCELLED, reason or "cancelled", actor)

    def build_compact_report(self, transaction: Transaction) -> dict[str, Any]:
        return build_compact_report(transaction)

    def save_report(self, transaction: Transaction, directory: Path | None = None) -> Path:
        return save_report(transaction, directory if directory is not None else self._reports_dir, now=self._now)


def _report_title(transaction: Transaction) -> str:
    lab_id = transaction.lab.lab_id.strip() or "unknown-lab"
    version = transaction.lab.lab_version_id.strip() or "unversioned"
    return f"Publish Report - {lab_id} - {version} - {transaction.state.value}"


def build_compact_report(transaction: Transaction) -> dict[str, Any]:
    """Compact view for pipeline dashboards.

    Keeps only failing, warning or error checks, and drops actors from the
    state history.
    """
    kept_checks = [
        check
        for check in transaction.checks
        if not check.passed or check.severity in (CheckSeverity.WARNING, CheckSeverity.ERROR)
    ]
    return {
        "schemaVersion": transaction.schema_version,
        "title": _report_title(transaction),
        "transactionId": transaction.transaction_id,
        "idempotencyKey": transaction.idempotency_key,
        "source": transaction.source.value,
        "state": transaction.state.value,
        "createdAt": transaction.created_at,
        "updatedAt": transaction.updated_at,
        "lab": {"labId": transaction.lab.lab_id, "labVersionId": transaction.lab.lab_version_id},
        "addressables": {
            "groupName": transaction.addressables.group_name,
            "profileName": transaction.addressables.profile_name,
            "buildTarget": transaction.addressables.build_target,
        },
        "artifacts": {
            "catalogHash": transaction.artifacts.catalog_hash,
            "contentHash": transaction.artifacts.content_hash,
            "bundleSizeBytes": transaction.artifacts.bundle_size_bytes,
            "buildOutputPath": transaction.artifacts.build_output_path,
            "reportJsonPath": transaction.artifacts.report_json_path,
        },
        "runtimePolicy": {
            "allowOfflineCacheLaunch": transaction.runtime_policy.allow_offline_cache_launch,
            "allowOlderCachedSameLab": transaction.runtime_policy.allow_older_cached_same_lab,
            "networkRequiredIfCacheMiss": transaction.runtime_policy.network_required_if_cache_miss,
        },
        "checks": [{"code": c.code, "severity": c.severity.value, "message": c.message} for c in kept_checks],
        "errors": [
            {
                "code": e.code,
                "phase": e.phase,
                "message": e.message,
                "retryable": e.retryable,
                "terminal": e.terminal,
            }
            for e in transaction.errors
        ],
        "stateHistory": [
            {"toState": entry.to_state.value, "at": entry.at, "reason": entry.reason} for entry in transaction.state_history
        ],
    }


def _file_part(value: str, fallback: str) -> str:
    normalized = _UNSAFE_FILE_CHARS.sub("-", value.strip()).strip("-")
    return normalized or fallback


def report_file_name(transaction: Transaction, moment: datetime) -> str:
    """``PublishReport_<lab>_<version>_<state>_<yyyyMMdd_HHmmss>_<transaction_id>.json``."""
    lab_id = _file_part(transaction.lab.lab_id, "lab")
    version = _file_part(transaction.lab.lab_version_id, "unversioned")
    state = _file_part(transaction.state.value, "state")
    transaction_id = _file_part(transaction.transaction_id, "transaction")
    stamp = moment.strftime("%Y%m%d_%H%M%S")
    return f"PublishReport_{lab_id}_{version}_{state}_{stamp}_{transaction_id}.json"


def save_report(transaction: Transaction, directory: Path, *, now: UtcNow = utc_now) -> Path:
    """Write the full report JSON and record its path in ``artifacts.report_json_path``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / report_file_name(transaction, now())
    transaction.artifacts.report_json_path = str(path)
    path.write_text(json.dumps(transaction.to_report_dict(), indent=2), encoding="utf-8")
    logger.info("Transaction report saved", transaction_id=transaction.transaction_id, path=str(path))
    return path


def load_report(path: Path) -> Transaction:
    """Read a report written by ``save_report``.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ReportFormatError: If the file is not valid report JSON
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ReportFormatError("$", f"invalid JSON: {e.msg} (line {e.lineno})") from e
    return Transaction.from_report_dict(data)
