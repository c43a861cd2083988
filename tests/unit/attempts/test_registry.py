# tests/unit/attempts/test_registry.py
"""Tests for local-first attempt identity allocation and reconciliation."""

import threading
from unittest.mock import patch

import pytest

from labflow.attempts.registry import AttemptIdentityRegistry


class TestCreateLocalFirst:
    def test_allocates_three_independent_ids(self, registry: AttemptIdentityRegistry) -> None:
        identity = registry.create_local_first("lab-1")

        token = identity.idempotency_key.rsplit(":", 1)[1]
        assert len({identity.launch_request_id, identity.attempt_id, token}) == 3
        assert identity.idempotency_key.startswith("attempt:lab-1:")
        assert identity.is_local_only is True
        assert identity.is_reconciled is False
        assert identity.canonical_attempt_id == ""
        assert identity.requested_at == "2025-03-01T12:00:00.000Z"

    def test_identity_is_stored(self, registry: AttemptIdentityRegistry) -> None:
        identity = registry.create_local_first("lab-1")
        assert identity.launch_request_id in registry
        assert len(registry) == 1
        assert registry.try_get(identity.launch_request_id) == identity

    def test_unique_across_calls(self, registry: AttemptIdentityRegistry) -> None:
        ids = {registry.create_local_first("lab").launch_request_id for _ in range(50)}
        assert len(ids) == 50

    def test_concurrent_allocation_keeps_every_record(self, registry: AttemptIdentityRegistry) -> None:
        def allocate() -> None:
            for _ in range(25):
                registry.create_local_first("lab")

        threads = [threading.Thread(target=allocate) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(registry) == 200


class TestTryGet:
    @pytest.mark.parametrize("key", [None, "", "   ", "missing"])
    def test_unknown_or_blank(self, registry: AttemptIdentityRegistry, key: str | None) -> None:
        assert registry.try_get(key) is None

    def test_key_is_trimmed(self, registry: AttemptIdentityRegistry) -> None:
        identity = registry.create_local_first("lab")
        assert registry.try_get(f"  {identity.launch_request_id} ") == identity

    def test_returns_snapshot_copy(self, registry: AttemptIdentityRegistry) -> None:
        identity = registry.create_local_first("lab")
        snapshot = registry.try_get(identity.launch_request_id)
        assert snapshot is not None
        snapshot.attempt_id = "tampered"
        assert registry.try_get(identity.launch_request_id).attempt_id == identity.attempt_id  # type: ignore[union-attr]


class TestTryReconcile:
    def test_reconciles_once(self, registry: AttemptIdentityRegistry, fixed_now) -> None:
        identity = registry.create_local_first("lab")
        fixed_now.advance(30)

        assert registry.try_reconcile(identity.launch_request_id, " canon-1 ")

        stored = registry.try_get(identity.launch_request_id)
        assert stored is not None
        assert stored.canonical_attempt_id == "canon-1"
        assert stored.is_reconciled is True
        assert stored.is_local_only is False
        assert stored.reconciled_at == "2025-03-01T12:00:30.000Z"
        assert stored.attempt_id == identity.attempt_id

    def test_same_canonical_id_again_is_idempotent(self, registry: AttemptIdentityRegistry) -> None:
        identity = registry.create_local_first("lab")
        registry.try_reconcile(identity.launch_request_id, "canon-1")
        assert registry.try_reconcile(identity.launch_request_id, "canon-1")

    def test_conflicting_canonical_id_rejected_with_warning(self, registry: AttemptIdentityRegistry) -> None:
        identity = registry.create_local_first("lab")
        registry.try_reconcile(identity.launch_request_id, "canon-1")

        with patch("labflow.attempts.registry.logger") as mock_logger:
            assert not registry.try_reconcile(identity.launch_request_id, "canon-2")

        mock_logger.warning.assert_called_once()
        assert registry.try_get(identity.launch_request_id).canonical_attempt_id == "canon-1"  # type: ignore[union-attr]

    @pytest.mark.parametrize("canonical", [None, "", "  "])
    def test_blank_canonical_id_rejected(self, registry: AttemptIdentityRegistry, canonical: str | None) -> None:
        identity = registry.create_local_first("lab")
        assert not registry.try_reconcile(identity.launch_request_id, canonical)
        assert registry.try_get(identity.launch_request_id).is_reconciled is False  # type: ignore[union-attr]

    @pytest.mark.parametrize("key", [None, "", "unknown-launch"])
    def test_unknown_launch_request_rejected(self, registry: AttemptIdentityRegistry, key: str | None) -> None:
        registry.create_local_first("lab")
        assert not registry.try_reconcile(key, "canon-1")
