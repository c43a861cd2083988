# src/labflow/telemetry/lifecycle.py
"""Launch lifecycle payloads for bridge consumers.

``launch_resolved`` is sent every time the service accepts a context (and
once on attach for a context that is already current);
``experience_abandoned`` is sent on demand by the host.
"""

from collections.abc import Iterable

import structlog

from labflow.attempts.service import LaunchContextService
from labflow.contracts.launch import LaunchContext
from labflow.contracts.telemetry import TELEMETRY_CONTRACT_VERSION, LifecycleData, LifecyclePayload
from labflow.core.clock import UtcNow, format_iso, utc_now
from labflow.telemetry.protocols import TransportProtocol

logger = structlog.get_logger(__name__)

LAUNCH_RESOLVED = "launch_resolved"
EXPERIENCE_ABANDONED = "experience_abandoned"


class LaunchLifecycleReporter:
    """Sends lifecycle payloads for the service's launch contexts to transports."""

    def __init__(
        self,
        service: LaunchContextService,
        transports: Iterable[TransportProtocol] = (),
        *,
        log_payloads: bool = False,
        now: UtcNow = utc_now,
    ) -> None:
        self._service = service
        self._transports = list(transports)
        self._log_payloads = log_payloads
        self._now = now
        self._attached = False
        self.attach()

    def attach(self) -> None:
        """Subscribe to the service; a context that is already current is reported now."""
        if self._attached:
            return
        self._service.subscribe(self._on_context_resolved)
        self._attached = True
        current = self._service.try_get_current_context()
        if current is not None:
            self._on_context_resolved(current)

    def detach(self) -> None:
        if self._attached:
            self._service.unsubscribe(self._on_context_resolved)
            self._attached = False

    def emit_experience_abandoned(self, session_duration_seconds: float) -> LifecyclePayload | None:
        """Report that the user left the experience; no-op without a current context."""
        context = self._service.try_get_current_context()
        if context is None:
            logger.debug("No launch context; experience_abandoned not sent")
            return None
        return self._emit(build_lifecycle_payload(context, EXPERIENCE_ABANDONED, session_duration_seconds, now=self._now))

    def _on_context_resolved(self, context: LaunchContext) -> None:
        self._emit(build_lifecycle_payload(context, LAUNCH_RESOLVED, 0.0, now=self._now))

    def _emit(self, payload: LifecyclePayload) -> LifecyclePayload:
        payload_json = payload.to_json()
        if self._log_payloads:
            logger.debug("Lifecycle payload", payload=payload_json)
        for transport in self._transports:
            try:
                transport.send(payload_json)
            except Exception as e:
                logger.warning("Lifecycle transport failed", transport=transport.name, lifecycle_event=payload.event, error=str(e))
        return payload


def build_lifecycle_payload(
    context: LaunchContext,
    event: str,
    session_duration_seconds: float = 0.0,
    *,
    now: UtcNow = utc_now,
) -> LifecyclePayload:
    return LifecyclePayload(
        launch_request_id=context.launch_request_id,
        attempt_id=context.attempt_id,
        idempotency_key=context.idempotency_key,
        timestamp=format_iso(now()),
        event=event,
        data=LifecycleData(
            lab_id=context.lab_id,
            address_key=context.address_key,
            resolved_version_id=context.resolved_version_id,
            runtime_url=context.runtime_url,
            session_duration_seconds=session_duration_seconds,
        ),
        contract_version=context.contract_version.strip() or TELEMETRY_CONTRACT_VERSION,
    )
