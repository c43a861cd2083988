"""Local-first attempt identity registry.

Identities are allocated without any I/O so an experience can start
immediately (offline or with a slow backend), then reconciled once with the
canonical attempt id the backend issues. Events already emitted under the
local ids are never rewritten; the backend merges them by launchRequestId.
"""

import threading
import uuid
from dataclasses import replace

import structlog

from labflow.contracts.identity import AttemptIdentity
from labflow.core.clock import UtcNow, format_iso, utc_now
from labflow.core.idempotency import attempt_key

logger = structlog.get_logger(__name__)


class AttemptIdentityRegistry:
    """Owns every AttemptIdentity created during its lifetime.

    Records are keyed by launch_request_id and never deleted. Callers get
    snapshot copies, so the only way to change a record is ``try_reconcile``.

    Thread Safety:
        A single lock covers the check-then-act sequences in
        ``create_local_first`` and ``try_reconcile``.
    """

    def __init__(self, *, now: UtcNow = utc_now) -> None:
        self._now = now
        self._by_launch_request_id: dict[str, AttemptIdentity] = {}
        self._lock = threading.Lock()

    def create_local_first(self, lab_id: str | None) -> AttemptIdentity:
        """Allocate and store a fresh local-only identity.

        The launch request id, attempt id and idempotency-key token are three
        independent uuid4 values.
        """
        identity = AttemptIdentity(
            launch_request_id=str(uuid.uuid4()),
            attempt_id=str(uuid.uuid4()),
            idempotency_key=attempt_key(lab_id, str(uuid.uuid4())),
            lab_id=(lab_id or "").strip(),
            requested_at=format_iso(self._now()),
        )
        with self._lock:
            self._by_launch_request_id[identity.launch_request_id] = identity
        logger.debug(
            "Local attempt identity created",
            launch_request_id=identity.launch_request_id,
            attempt_id=identity.attempt_id,
            lab_id=identity.lab_id,
        )
        return replace(identity)

    def try_get(self, launch_request_id: str | None) -> AttemptIdentity | None:
        """Snapshot of the identity for ``launch_request_id`` (trimmed), or None."""
        if launch_request_id is None or not launch_request_id.strip():
            return None
        with self._lock:
            identity = self._by_launch_request_id.get(launch_request_id.strip())
            return replace(identity) if identity is not None else None

    def try_reconcile(self, launch_request_id: str | None, canonical_attempt_id: str | None) -> bool:
        """Attach the backend's canonical attempt id.

        Returns:
            True when the record is reconciled with ``canonical_attempt_id``
            (including a repeat of the same id). False for an unknown or blank
            launch request id, a blank canonical id, or a canonical id that
            conflicts with an earlier reconciliation; none of these mutate.

        An identity is reconciled at most once. A later, different canonical
        id is refused and logged; the first one is kept.
        """
        if launch_request_id is None or not launch_request_id.strip():
            return False
        canonical = (canonical_attempt_id or "").strip()
        key = launch_request_id.strip()

        with self._lock:
            identity = self._by_launch_request_id.get(key)
            if identity is None:
                logger.debug("Reconciliation target unknown", launch_request_id=key)
                return False
            if not canonical:
                return False
            if identity.is_reconciled:
                if identity.canonical_attempt_id == canonical:
                    return True
                logger.warning(
                    "Conflicting canonical attempt id ignored",
                    launch_request_id=key,
                    canonical_attempt_id=identity.canonical_attempt_id,
                    rejected_canonical_attempt_id=canonical,
                )
                return False

            identity.canonical_attempt_id = canonical
            identity.is_reconciled = True
            identity.is_local_only = False
            identity.reconciled_at = format_iso(self._now())

        logger.info("Attempt reconciled", launch_request_id=key, canonical_attempt_id=canonical)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_launch_request_id)

    def __contains__(self, launch_request_id: object) -> bool:
        if not isinstance(launch_request_id, str):
            return False
        with self._lock:
            return launch_request_id.strip() in self._by_launch_request_id
