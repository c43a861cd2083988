"""Publish transaction lifecycle: state machine and phase reporting."""

from labflow.publishing.reports import TransactionReporter, build_compact_report, load_report, save_report
from labflow.publishing.state_machine import (
    ALLOWED_TRANSITIONS,
    REQUESTED_STATE_BY_PHASE,
    TERMINAL_STATES,
    can_transition,
    create_draft,
    is_terminal,
    try_transition,
    verify_history,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "REQUESTED_STATE_BY_PHASE",
    "TERMINAL_STATES",
    "TransactionReporter",
    "build_compact_report",
    "can_transition",
    "create_draft",
    "is_terminal",
    "load_report",
    "save_report",
    "try_transition",
    "verify_history",
]
