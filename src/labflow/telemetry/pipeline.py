# src/labflow/telemetry/pipeline.py
"""TelemetryEventPipeline: sequences, batches and finalizes attempt telemetry.

Per attempt the pipeline moves UNINITIALIZED -> ACTIVE -> FINALIZED:
- Step events get a gap-free sequence number (starting at 1) and the
  idempotency key ``step:<attempt_id>:<n>``, then wait in a bounded FIFO
  queue until a flush sends them as one batch.
- ``emit_attempt_end`` flushes everything pending, then sends exactly one
  summary batch. Later calls for that attempt are silent no-ops.

The host drives time: ``tick()`` performs the periodic flush, and the
injected Clock (monotonic) and ``utc_now`` (wall clock) make every timing
decision reproducible in tests.

Failure model:
- No valid lineage context: the event or summary is dropped, logged, counted
- Transport exceptions: logged and counted per transport, never propagated
- Events leave the queue before delivery and are never re-queued
"""

import math
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from labflow.contracts.config import RuntimeTelemetryConfig, get_internal_default
from labflow.contracts.enums import AttemptPhase, CompletionStatus, StepEventType
from labflow.contracts.launch import LaunchContext, LaunchContextProvider, LineageValidator
from labflow.contracts.telemetry import (
    UNSET_BYTES,
    UNSET_PROGRESS,
    AttemptSessionData,
    AttemptSummary,
    StepEvent,
    StepEventData,
    TelemetryBatch,
)
from labflow.core.clock import DEFAULT_CLOCK, Clock, UtcNow, format_iso, parse_iso, utc_now
from labflow.core.idempotency import step_event_key
from labflow.telemetry.buffer import BoundedBuffer
from labflow.telemetry.protocols import TransportProtocol

logger = structlog.get_logger(__name__)

DEFAULT_DEVICE_TYPE = "unity_runtime"


@dataclass
class _AttemptState:
    """Counters owned by the pipeline for one attempt id."""

    next_sequence: int = 1
    hints_used: int = 0
    resets_used: int = 0
    critical_error_count: int = 0
    last_progress_emit_at: float | None = None
    last_progress_value: float = UNSET_PROGRESS


def normalize_completion_status(value: CompletionStatus | str | None) -> CompletionStatus:
    """Map to a recognized status; blank or unknown values become ``abandoned``."""
    if isinstance(value, CompletionStatus):
        return value
    try:
        return CompletionStatus((value or "").strip().lower())
    except ValueError:
        return CompletionStatus.ABANDONED


def resolve_duration_seconds(started_at: str, completed_at: datetime, override: float | None) -> int:
    """Whole seconds between start and completion, never negative.

    A finite override wins; otherwise ``started_at`` is parsed as ISO-8601
    and an unparsable value gives 0. NaN and infinite overrides are ignored.
    """
    if override is not None and math.isfinite(override):
        return max(0, round(override))
    started = parse_iso(started_at)
    if started is None:
        return 0
    return max(0, round((completed_at - started).total_seconds()))


def _clean(value: str | None) -> str:
    return (value or "").strip()


class TelemetryEventPipeline:
    """Per-attempt step-event sequencing, batching and exactly-once summaries.

    Example:
        pipeline = TelemetryEventPipeline(config, service, service.lineage_validator)
        pipeline.subscribe(MemoryTransport())
        pipeline.track_interaction("grab", step_id="s1")
        pipeline.tick()                    # periodic flush, host-driven
        pipeline.emit_attempt_completed()  # flushes, then one summary batch

    Thread Safety:
        One re-entrant lock serializes every public operation, so the
        finalized-set and sequence check-then-act sequences never interleave.
    """

    def __init__(
        self,
        config: RuntimeTelemetryConfig,
        context_provider: LaunchContextProvider,
        lineage_validator: LineageValidator,
        transports: Iterable[TransportProtocol] = (),
        *,
        clock: Clock = DEFAULT_CLOCK,
        utc_now: UtcNow = utc_now,
    ) -> None:
        self._config = config
        self._provider = context_provider
        self._validator = lineage_validator
        self._transports: list[TransportProtocol] = list(transports)
        self._clock = clock
        self._utc_now = utc_now

        self._lock = threading.RLock()
        self._buffer = BoundedBuffer(max_size=config.max_pending_events)
        self._attempts: dict[str, _AttemptState] = {}
        self._finalized: set[str] = set()

        min_interval = float(get_internal_default("telemetry", "min_flush_interval_seconds"))
        self._flush_interval = max(min_interval, config.flush_interval_seconds)
        self._batch_cap = max(1, config.max_events_per_batch)
        self._next_flush_at = clock.monotonic() + self._flush_interval

        self._batches_sent = 0
        self._events_sent = 0
        self._summaries_sent = 0
        self._dropped_invalid_context = 0
        self._dropped_finalized = 0
        self._transport_failures: dict[str, int] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, transport: TransportProtocol) -> None:
        """Add a transport; batches fan out in subscription order."""
        with self._lock:
            self._transports.append(transport)

    # ------------------------------------------------------------------
    # Step events
    # ------------------------------------------------------------------

    def queue_step_event(
        self,
        event_type: str = StepEventType.INTERACTION,
        action: str = StepEventType.INTERACTION,
        step_id: str = "",
        step_kind: str = "",
        detail: str = "",
        progress: float = UNSET_PROGRESS,
        downloaded_bytes: int = UNSET_BYTES,
        total_bytes: int = UNSET_BYTES,
        critical: bool = False,
    ) -> StepEvent | None:
        """Sequence and enqueue one step event for the current attempt.

        Returns:
            The queued event, or None when it was dropped (no valid context,
            or the attempt is already finalized)
        """
        with self._lock:
            context = self._validated_context(require_resolved_version_id=False, what="step event")
            if context is None:
                return None
            return self._enqueue(
                context,
                event_type=event_type,
                action=action,
                step_id=step_id,
                step_kind=step_kind,
                detail=detail,
                progress=progress,
                downloaded_bytes=downloaded_bytes,
                total_bytes=total_bytes,
                critical=critical,
            )

    def track_step_completed(self, step_id: str = "", step_kind: str = "") -> StepEvent | None:
        return self.queue_step_event(
            StepEventType.STEP_COMPLETED, StepEventType.STEP_COMPLETED, step_id=step_id, step_kind=step_kind
        )

    def track_interaction(self, action: str, step_id: str = "", step_kind: str = "", detail: str = "") -> StepEvent | None:
        return self.queue_step_event(StepEventType.INTERACTION, action, step_id=step_id, step_kind=step_kind, detail=detail)

    def track_hint_used(self, step_id: str = "", detail: str = "") -> StepEvent | None:
        """Queue a ``hint_used`` event; the attempt's hint counter moves only if it is accepted."""
        with self._lock:
            event = self.queue_step_event(StepEventType.HINT_USED, StepEventType.HINT_USED, step_id=step_id, detail=detail)
            if event is not None:
                self._attempts[event.attempt_id].hints_used += 1
            return event

    def track_reset(self, step_id: str = "", detail: str = "") -> StepEvent | None:
        with self._lock:
            event = self.queue_step_event(StepEventType.RESET, StepEventType.RESET, step_id=step_id, detail=detail)
            if event is not None:
                self._attempts[event.attempt_id].resets_used += 1
            return event

    def track_error(self, code: str = "", message: str = "", critical: bool = False) -> StepEvent | None:
        """Queue an ``error`` event with detail ``<code>: <message>``.

        Critical errors also count towards the attempt's critical_error_count.
        """
        detail = f"{_clean(code) or 'runtime_error'}: {_clean(message) or 'unknown error'}"
        with self._lock:
            event = self.queue_step_event(StepEventType.ERROR, "runtime_error", detail=detail, critical=critical)
            if event is not None and critical:
                self._attempts[event.attempt_id].critical_error_count += 1
            return event

    def track_download_progress(self, downloaded_bytes: int, total_bytes: int) -> StepEvent | None:
        """Queue a throttled ``download_progress`` interaction.

        Emitted only for the attempt's first progress value, after
        ``progress_emit_interval_seconds``, on a change of at least
        ``progress_emit_delta``, or on reaching 1.0.
        """
        progress = min(1.0, max(0.0, downloaded_bytes / total_bytes)) if total_bytes > 0 else 0.0
        with self._lock:
            context = self._validated_context(require_resolved_version_id=False, what="download progress")
            if context is None:
                return None
            if context.attempt_id in self._finalized:
                self._drop_finalized(context.attempt_id)
                return None

            state = self._attempt_state(context.attempt_id)
            now = self._clock.monotonic()
            emit_now = (
                state.last_progress_emit_at is None
                or now - state.last_progress_emit_at >= self._config.progress_emit_interval_seconds
                or abs(progress - state.last_progress_value) >= self._config.progress_emit_delta
                or progress >= 1.0
            )
            if not emit_now:
                return None

            state.last_progress_emit_at = now
            state.last_progress_value = progress
            return self._enqueue(
                context,
                event_type=StepEventType.INTERACTION,
                action="download_progress",
                step_id="",
                step_kind="content_delivery",
                detail="",
                progress=progress,
                downloaded_bytes=downloaded_bytes,
                total_bytes=total_bytes,
                critical=False,
            )

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def flush(self) -> int:
        """Send up to ``max_events_per_batch`` pending events (oldest first) as one batch.

        Returns:
            Number of events sent
        """
        with self._lock:
            return self._flush_locked()

    def flush_all(self) -> int:
        """Flush until nothing is pending. Returns the number of events sent."""
        with self._lock:
            return self._flush_all_locked()

    def tick(self) -> int:
        """Periodic host-driven check: flush once the flush interval has elapsed.

        Returns:
            Number of events sent (0 when nothing was due)
        """
        with self._lock:
            if not self._config.auto_flush or len(self._buffer) == 0:
                return 0
            if self._clock.monotonic() < self._next_flush_at:
                return 0
            return self._flush_locked()

    # ------------------------------------------------------------------
    # Attempt end
    # ------------------------------------------------------------------

    def emit_attempt_end(
        self,
        completion_status: CompletionStatus | str,
        completion_reason: str = "",
        duration_override: float | None = None,
    ) -> AttemptSummary | None:
        """Finalize the current attempt with exactly one summary batch.

        Needs a lineage-valid context with a resolved version id. Every
        pending step event (for all attempts) is flushed first, so this
        attempt's events always reach transports before its summary.

        Returns:
            The summary sent, or None when dropped or already finalized
        """
        with self._lock:
            context = self._validated_context(require_resolved_version_id=True, what="attempt summary")
            if context is None:
                return None
            if context.attempt_id in self._finalized:
                return None

            state = self._attempt_state(context.attempt_id)
            self._flush_all_locked()

            completed = self._utc_now()
            completed_at = format_iso(completed)
            reason = _clean(completion_reason)
            summary = AttemptSummary(
                attempt_id=context.attempt_id,
                launch_request_id=context.launch_request_id,
                idempotency_key=context.idempotency_key,
                lab_id=context.lab_id,
                lab_version_id=context.resolved_version_id,
                started_at=context.requested_at or completed_at,
                completed_at=completed_at,
                duration_seconds=resolve_duration_seconds(context.requested_at, completed, duration_override),
                completion_status=normalize_completion_status(completion_status),
                critical_error_count=state.critical_error_count,
                hints_used=state.hints_used,
                resets_used=state.resets_used,
                is_offline_submission=context.launched_from_cache,
                device_type=_clean(self._config.device_type) or DEFAULT_DEVICE_TYPE,
                session_data=AttemptSessionData(
                    completion_reason=reason,
                    hints_used=state.hints_used,
                    resets_used=state.resets_used,
                    critical_error_count=state.critical_error_count,
                ),
            )

            self._deliver(TelemetryBatch(attempts=(summary,)))
            self._finalized.add(context.attempt_id)
            self._summaries_sent += 1
            logger.info(
                "Attempt finalized",
                attempt_id=summary.attempt_id,
                launch_request_id=summary.launch_request_id,
                completion_status=summary.completion_status,
                duration_seconds=summary.duration_seconds,
            )
            return summary

    def emit_attempt_completed(self) -> AttemptSummary | None:
        return self.emit_attempt_end(CompletionStatus.COMPLETED, "scenario_completed")

    def emit_attempt_failed(self, reason: str = "") -> AttemptSummary | None:
        return self.emit_attempt_end(CompletionStatus.FAILED, _clean(reason) or "runtime_failed")

    def emit_attempt_abandoned(self, session_duration_seconds: float = -1.0) -> AttemptSummary | None:
        """Abandon the current attempt; a non-negative session duration overrides the computed one."""
        override = session_duration_seconds if session_duration_seconds >= 0 else None
        return self.emit_attempt_end(CompletionStatus.ABANDONED, "experience_abandoned", override)

    # ------------------------------------------------------------------
    # Introspection and shutdown
    # ------------------------------------------------------------------

    def attempt_phase(self, attempt_id: str) -> AttemptPhase:
        with self._lock:
            if attempt_id in self._finalized:
                return AttemptPhase.FINALIZED
            if attempt_id in self._attempts:
                return AttemptPhase.ACTIVE
            return AttemptPhase.UNINITIALIZED

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot for monitoring.

        - batches_sent / events_sent / summaries_sent: handed to transports
        - events_dropped: total of the three drop reasons below
        - dropped_invalid_context, dropped_finalized, dropped_overflow
        - transport_failures: per-transport exception counts
        - pending_events / max_pending_events: queue depth and bound
        """
        with self._lock:
            dropped_overflow = self._buffer.dropped_count
            return {
                "batches_sent": self._batches_sent,
                "events_sent": self._events_sent,
                "summaries_sent": self._summaries_sent,
                "events_dropped": self._dropped_invalid_context + self._dropped_finalized + dropped_overflow,
                "dropped_invalid_context": self._dropped_invalid_context,
                "dropped_finalized": self._dropped_finalized,
                "dropped_overflow": dropped_overflow,
                "transport_failures": dict(self._transport_failures),
                "pending_events": len(self._buffer),
                "max_pending_events": self._buffer.max_size,
            }

    def close(self) -> None:
        """Flush everything pending, then flush and close every transport. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._flush_all_locked()
            for transport in self._transports:
                try:
                    transport.flush()
                except Exception as e:
                    logger.warning("Transport flush failed", transport=transport.name, error=str(e))
                try:
                    transport.close()
                except Exception as e:
                    logger.warning("Transport close failed", transport=transport.name, error=str(e))
            self._transports.clear()
            self._closed = True
            logger.debug("Telemetry pipeline closed", **self.health_metrics)

    # ------------------------------------------------------------------
    # Internals (callers hold self._lock)
    # ------------------------------------------------------------------

    def _validated_context(self, *, require_resolved_version_id: bool, what: str) -> LaunchContext | None:
        context = self._provider.try_get_current_context()
        reason = self._validator.rejection_reason(context, require_resolved_version_id=require_resolved_version_id)
        if context is None or reason is not None:
            self._dropped_invalid_context += 1
            logger.warning(f"Skipping {what}: no valid launch context", reason=reason or "launch context is unavailable")
            return None
        return context.normalized()

    def _attempt_state(self, attempt_id: str) -> _AttemptState:
        state = self._attempts.get(attempt_id)
        if state is None:
            state = _AttemptState()
            self._attempts[attempt_id] = state
            logger.debug("Attempt telemetry started", attempt_id=attempt_id)
        return state

    def _drop_finalized(self, attempt_id: str) -> None:
        self._dropped_finalized += 1
        logger.debug("Step event dropped for finalized attempt", attempt_id=attempt_id)

    def _enqueue(
        self,
        context: LaunchContext,
        *,
        event_type: str,
        action: str,
        step_id: str,
        step_kind: str,
        detail: str,
        progress: float,
        downloaded_bytes: int,
        total_bytes: int,
        critical: bool,
    ) -> StepEvent | None:
        if context.attempt_id in self._finalized:
            self._drop_finalized(context.attempt_id)
            return None

        state = self._attempt_state(context.attempt_id)
        sequence = state.next_sequence
        state.next_sequence += 1

        event = StepEvent(
            attempt_id=context.attempt_id,
            launch_request_id=context.launch_request_id,
            attempt_idempotency_key=context.idempotency_key,
            idempotency_key=step_event_key(context.attempt_id, sequence),
            lab_id=context.lab_id,
            event_type=_clean(event_type) or StepEventType.INTERACTION.value,
            event_data=StepEventData(
                action=_clean(action) or StepEventType.INTERACTION.value,
                step_guid=_clean(step_id),
                step_type=_clean(step_kind),
                detail=_clean(detail),
                progress_percent=progress,
                downloaded_bytes=downloaded_bytes,
                total_bytes=total_bytes,
                critical=critical,
            ),
            client_timestamp=format_iso(self._utc_now()),
            sequence_number=sequence,
        )
        self._buffer.append(event)
        if len(self._buffer) >= self._batch_cap:
            self._flush_locked()
        return event

    def _flush_locked(self) -> int:
        batch = self._buffer.pop_batch(self._batch_cap)
        self._next_flush_at = self._clock.monotonic() + self._flush_interval
        if not batch:
            return 0
        self._deliver(TelemetryBatch(step_events=tuple(batch)))
        self._events_sent += len(batch)
        return len(batch)

    def _flush_all_locked(self) -> int:
        sent = self._flush_locked()
        while len(self._buffer) > 0:
            sent += self._flush_locked()
        return sent

    def _deliver(self, batch: TelemetryBatch) -> None:
        payload = batch.to_json()
        self._batches_sent += 1
        if self._config.log_payloads:
            logger.debug("Telemetry batch", payload=payload)
        for transport in list(self._transports):
            try:
                transport.send(payload)
            except Exception as e:
                self._transport_failures[transport.name] = self._transport_failures.get(transport.name, 0) + 1
                logger.warning(
                    "Telemetry transport failed",
                    transport=transport.name,
                    step_events=len(batch.step_events),
                    attempts=len(batch.attempts),
                    error=str(e),
                )
