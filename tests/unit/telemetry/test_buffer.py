# tests/unit/telemetry/test_buffer.py
"""Tests for the bounded pending-event buffer."""

from unittest.mock import patch

import pytest

from labflow.contracts.telemetry import StepEvent, StepEventData
from labflow.telemetry.buffer import BoundedBuffer


def _event(sequence: int) -> StepEvent:
    return StepEvent(
        attempt_id="a",
        launch_request_id="l",
        attempt_idempotency_key="attempt:lab:t",
        idempotency_key=f"step:a:{sequence}",
        lab_id="lab",
        event_type="interaction",
        event_data=StepEventData(action="click"),
        client_timestamp="2025-03-01T12:00:00.000Z",
        sequence_number=sequence,
    )


class TestBoundedBuffer:
    def test_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError, match="max_size"):
            BoundedBuffer(max_size=0)

    def test_fifo_batches(self) -> None:
        buffer = BoundedBuffer(max_size=10)
        for n in range(1, 6):
            buffer.append(_event(n))

        assert [e.sequence_number for e in buffer.pop_batch(3)] == [1, 2, 3]
        assert [e.sequence_number for e in buffer.pop_batch(3)] == [4, 5]
        assert len(buffer) == 0
        assert buffer.pop_batch(3) == []

    def test_overflow_drops_oldest(self) -> None:
        buffer = BoundedBuffer(max_size=3)
        evicted = [buffer.append(_event(n)) for n in range(1, 6)]

        assert evicted == [False, False, False, True, True]
        assert buffer.dropped_count == 2
        assert [e.sequence_number for e in buffer.pop_all()] == [3, 4, 5]

    def test_overflow_warning_is_aggregated(self) -> None:
        buffer = BoundedBuffer(max_size=1)
        with patch("labflow.telemetry.buffer.logger") as mock_logger:
            for n in range(201):
                buffer.append(_event(n))

        assert buffer.dropped_count == 200
        assert mock_logger.warning.call_count == 2

    def test_max_size(self) -> None:
        assert BoundedBuffer(max_size=7).max_size == 7
