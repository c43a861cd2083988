"""Attempt identity records.

These types answer: "How do we refer to one launch attempt?"
"""

from dataclasses import dataclass


@dataclass
class AttemptIdentity:
    """Identity of one launch attempt.

    Allocated locally (no network) so the experience can start immediately,
    then reconciled once with the backend's canonical attempt id.

    - launch_request_id: Stable local key; the registry indexes by it
    - attempt_id: Working id stamped on telemetry
    - idempotency_key: Attempt-level retry key
    - canonical_attempt_id: Backend id, empty until reconciled

    Note: NOT frozen because reconciliation flips the reconciliation fields
    in place. Only AttemptIdentityRegistry mutates it; readers get copies.
    """

    launch_request_id: str
    attempt_id: str
    idempotency_key: str
    lab_id: str
    requested_at: str
    canonical_attempt_id: str = ""
    is_local_only: bool = True
    is_reconciled: bool = False
    reconciled_at: str = ""
