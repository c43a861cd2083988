"""Runtime launch-context service.

Holds the context of the launch currently running and is the entry point
for backend reconciliation. It satisfies LaunchContextProvider, so the
telemetry pipeline reads the current context straight from it.
"""

import threading
from collections.abc import Callable
from dataclasses import replace

import structlog

from labflow.attempts.context import RegistryLineageValidator, parse_bridge_payload, runtime_rejection_reason
from labflow.attempts.registry import AttemptIdentityRegistry
from labflow.contracts.launch import LaunchContext
from labflow.contracts.publishing import RuntimePolicyInfo
from labflow.core.clock import UtcNow, format_iso, utc_now

logger = structlog.get_logger(__name__)

ContextHandler = Callable[[LaunchContext], None]


class LaunchContextService:
    """Current-context provider and reconciliation entry point.

    Subscribers are called synchronously, in subscription order, each time a
    context is accepted. Handler exceptions propagate to the caller of
    ``set_launch_context``.
    """

    def __init__(
        self,
        registry: AttemptIdentityRegistry,
        policy: RuntimePolicyInfo | None = None,
        *,
        now: UtcNow = utc_now,
    ) -> None:
        self._registry = registry
        self._policy = policy if policy is not None else RuntimePolicyInfo()
        self._now = now
        self._validator = RegistryLineageValidator(registry)
        self._current: LaunchContext | None = None
        self._handlers: list[ContextHandler] = []
        self._lock = threading.Lock()

    @property
    def registry(self) -> AttemptIdentityRegistry:
        return self._registry

    @property
    def lineage_validator(self) -> RegistryLineageValidator:
        return self._validator

    def subscribe(self, handler: ContextHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: ContextHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def set_launch_context(self, context: LaunchContext | None) -> bool:
        """Validate and install ``context`` as the current launch.

        Policy flags are OR-merged with the configured runtime policy, and a
        missing ``requested_at`` is stamped now.

        Returns:
            False (with an error log) when the context fails the runtime rules;
            the previous context then stays current
        """
        if context is None:
            return False

        context = context.normalized()
        context = replace(
            context,
            requested_at=context.requested_at or format_iso(self._now()),
            allow_offline_cache_launch=context.allow_offline_cache_launch or self._policy.allow_offline_cache_launch,
            allow_older_cached_same_lab=context.allow_older_cached_same_lab or self._policy.allow_older_cached_same_lab,
            network_required_if_cache_miss=context.network_required_if_cache_miss
            or self._policy.network_required_if_cache_miss,
        )

        reason = runtime_rejection_reason(context, self._validator)
        if reason is not None:
            logger.error(
                "Launch context rejected",
                reason=reason,
                launch_request_id=context.launch_request_id,
                lab_id=context.lab_id,
                source=context.source,
            )
            return False

        with self._lock:
            self._current = context
        logger.info(
            "Launch context resolved",
            launch_request_id=context.launch_request_id,
            attempt_id=context.attempt_id,
            lab_id=context.lab_id,
            resolved_version_id=context.resolved_version_id,
            source=context.source,
        )
        for handler in list(self._handlers):
            handler(context)
        return True

    def try_get_current_context(self) -> LaunchContext | None:
        with self._lock:
            return replace(self._current) if self._current is not None else None

    def try_reconcile_attempt(self, launch_request_id: str | None, canonical_attempt_id: str | None) -> bool:
        return self._registry.try_reconcile(launch_request_id, canonical_attempt_id)

    def receive_bridge_payload(self, json_text: str | None) -> bool:
        """Parse a host-app payload and install it as the current context."""
        context = parse_bridge_payload(json_text, self._registry, now=self._now)
        if context is None:
            return False
        return self.set_launch_context(context)

    def shutdown(self) -> None:
        """Forget the current context. Subscribers stay attached."""
        with self._lock:
            self._current = None
