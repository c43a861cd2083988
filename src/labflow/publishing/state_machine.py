"""Publish transaction state machine.

A fixed adjacency table decides which transitions are legal. Requested
states move only to their in-progress state (or cancelled); in-progress
states move to success, failed_retryable or failed_terminal. failed_retryable
is the single retry hub: it re-enters any of the four ``*_requested`` states
so a failed phase resumes exactly where it stopped.

Applying a transition never raises. A rejected edge returns False and leaves
the transaction untouched; callers decide whether to log.
"""

import uuid
from collections.abc import Mapping
from types import MappingProxyType
from typing import Final

from labflow.contracts.enums import PublishPhase, TransactionSource, TransactionState
from labflow.contracts.publishing import StateHistoryEntry, Transaction
from labflow.core.clock import UtcNow, format_iso, utc_now

S = TransactionState

ALLOWED_TRANSITIONS: Final[Mapping[TransactionState, frozenset[TransactionState]]] = MappingProxyType(
    {
        S.DRAFT: frozenset({S.VALIDATING, S.CANCELLED}),
        S.VALIDATING: frozenset({S.VALIDATED, S.FAILED_TERMINAL}),
        S.VALIDATED: frozenset({S.BUILD_REQUESTED, S.CANCELLED}),
        S.BUILD_REQUESTED: frozenset({S.BUILDING, S.CANCELLED}),
        S.BUILDING: frozenset({S.BUILT, S.FAILED_RETRYABLE, S.FAILED_TERMINAL}),
        S.BUILT: frozenset({S.PUBLISH_REQUESTED, S.CANCELLED}),
        S.PUBLISH_REQUESTED: frozenset({S.PUBLISHING, S.CANCELLED}),
        S.PUBLISHING: frozenset({S.PUBLISHED, S.FAILED_RETRYABLE, S.FAILED_TERMINAL}),
        S.PUBLISHED: frozenset({S.INGEST_REQUESTED, S.CANCELLED}),
        S.INGEST_REQUESTED: frozenset({S.INGESTING, S.CANCELLED}),
        S.INGESTING: frozenset({S.INGESTED, S.FAILED_RETRYABLE, S.FAILED_TERMINAL}),
        S.INGESTED: frozenset({S.ACTIVATE_REQUESTED, S.CANCELLED}),
        # Activation is a single step: no separate in-progress state
        S.ACTIVATE_REQUESTED: frozenset({S.ACTIVATED, S.FAILED_RETRYABLE, S.FAILED_TERMINAL}),
        S.FAILED_RETRYABLE: frozenset(
            {S.BUILD_REQUESTED, S.PUBLISH_REQUESTED, S.INGEST_REQUESTED, S.ACTIVATE_REQUESTED, S.CANCELLED}
        ),
        S.ACTIVATED: frozenset(),
        S.FAILED_TERMINAL: frozenset(),
        S.CANCELLED: frozenset(),
    }
)

TERMINAL_STATES: Final[frozenset[TransactionState]] = frozenset(
    state for state, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Where failed_retryable resumes for each retryable phase
REQUESTED_STATE_BY_PHASE: Final[Mapping[PublishPhase, TransactionState]] = MappingProxyType(
    {
        PublishPhase.BUILD: S.BUILD_REQUESTED,
        PublishPhase.PUBLISH: S.PUBLISH_REQUESTED,
        PublishPhase.INGEST: S.INGEST_REQUESTED,
        PublishPhase.ACTIVATE: S.ACTIVATE_REQUESTED,
    }
)

INITIALIZATION_REASON: Final = "initialization"


def _coerce(state: TransactionState | str | None) -> TransactionState | None:
    if state is None:
        return None
    if isinstance(state, TransactionState):
        return state
    try:
        return TransactionState(state.strip())
    except ValueError:
        return None


def can_transition(from_state: TransactionState | str | None, to_state: TransactionState | str | None) -> bool:
    """Pure table lookup. Empty, None or unknown endpoints are never allowed."""
    source = _coerce(from_state)
    target = _coerce(to_state)
    if source is None or target is None:
        return False
    return target in ALLOWED_TRANSITIONS[source]


def try_transition(
    transaction: Transaction,
    to_state: TransactionState | str | None,
    reason: str | None = None,
    actor: str | None = None,
    *,
    now: UtcNow = utc_now,
) -> bool:
    """Apply ``transaction.state -> to_state`` if the table allows it.

    On success sets ``state``, stamps ``updated_at`` and appends one history
    entry. On rejection returns False without touching the transaction.
    """
    target = _coerce(to_state)
    if target is None or not can_transition(transaction.state, target):
        return False

    at = format_iso(now())
    previous = transaction.state
    transaction.state = target
    transaction.updated_at = at
    transaction.state_history.append(
        StateHistoryEntry(from_state=previous, to_state=target, at=at, reason=reason or "", actor=actor or "")
    )
    return True


def create_draft(
    source: TransactionSource | str | None = None,
    actor: str | None = None,
    *,
    now: UtcNow = utc_now,
) -> Transaction:
    """Create a new draft transaction with its synthetic initialization entry.

    Blank or unrecognized sources default to ``devkit_guided_setup``.
    """
    resolved_source = TransactionSource.GUIDED_SETUP
    if isinstance(source, TransactionSource):
        resolved_source = source
    elif source and source.strip() in {s.value for s in TransactionSource}:
        resolved_source = TransactionSource(source.strip())

    at = format_iso(now())
    return Transaction(
        transaction_id=str(uuid.uuid4()),
        created_at=at,
        updated_at=at,
        source=resolved_source,
        state=S.DRAFT,
        state_history=[
            StateHistoryEntry(from_state=None, to_state=S.DRAFT, at=at, reason=INITIALIZATION_REASON, actor=actor or "")
        ],
    )


def verify_history(transaction: Transaction) -> list[str]:
    """List audit-history invariant violations (empty means consistent).

    Checks that history is non-empty, starts with the initialization entry,
    links each entry's from_state to the previous to_state, records only legal
    edges, and ends at the current state.
    """
    history = transaction.state_history
    if not history:
        return ["state history is empty"]

    problems: list[str] = []
    first = history[0]
    if first.from_state is not None or first.to_state is not S.DRAFT or first.reason != INITIALIZATION_REASON:
        problems.append("first history entry is not the draft initialization entry")

    for index in range(1, len(history)):
        entry = history[index]
        previous = history[index - 1]
        if entry.from_state != previous.to_state:
            problems.append(
                f"history[{index}] starts from {entry.from_state or '<none>'} but history[{index - 1}] ended at {previous.to_state}"
            )
        if not can_transition(entry.from_state, entry.to_state):
            problems.append(f"history[{index}] records illegal transition {entry.from_state or '<none>'} -> {entry.to_state}")

    if transaction.state != history[-1].to_state:
        problems.append(f"state {transaction.state} does not match last history entry {history[-1].to_state}")
    return problems


def is_terminal(state: TransactionState) -> bool:
    return state in TERMINAL_STATES
