"""Launch context construction and validation.

Three ways a context comes to exist:
- ``create_menu_context``: the runtime's own lab menu picked a lab
- ``create_direct_context``: the scene was opened directly, no lab selected
- ``parse_bridge_payload``: an external host app handed over a JSON payload

All three allocate (or complete) lineage through the AttemptIdentityRegistry
so every context that reaches the telemetry pipeline has the four lineage ids.
"""

from dataclasses import replace

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from labflow.attempts.registry import AttemptIdentityRegistry
from labflow.contracts.enums import LaunchSource
from labflow.contracts.launch import LAUNCH_CONTRACT_VERSION, LaunchContext
from labflow.contracts.publishing import RuntimePolicyInfo
from labflow.core.clock import UtcNow, format_iso, utc_now

logger = structlog.get_logger(__name__)

DIRECT_LAB_ID = "direct"


def _with_policy(context: LaunchContext, policy: RuntimePolicyInfo | None) -> LaunchContext:
    policy = policy if policy is not None else RuntimePolicyInfo()
    return replace(
        context,
        allow_offline_cache_launch=policy.allow_offline_cache_launch,
        allow_older_cached_same_lab=policy.allow_older_cached_same_lab,
        network_required_if_cache_miss=policy.network_required_if_cache_miss,
    )


def create_menu_context(
    registry: AttemptIdentityRegistry,
    lab_id: str,
    resolved_version_id: str = "",
    runtime_url: str = "",
    policy: RuntimePolicyInfo | None = None,
    *,
    now: UtcNow = utc_now,
) -> LaunchContext:
    """Context for a lab chosen from the runtime's own menu."""
    identity = registry.create_local_first(lab_id)
    context = LaunchContext(
        launch_request_id=identity.launch_request_id,
        attempt_id=identity.attempt_id,
        idempotency_key=identity.idempotency_key,
        lab_id=lab_id.strip(),
        resolved_version_id=resolved_version_id.strip(),
        runtime_url=runtime_url.strip(),
        source=LaunchSource.MENU,
        requested_at=format_iso(now()),
    )
    return _with_policy(context, policy)


def create_direct_context(
    registry: AttemptIdentityRegistry,
    policy: RuntimePolicyInfo | None = None,
    *,
    now: UtcNow = utc_now,
) -> LaunchContext:
    """Context for a scene opened directly, attributed to the ``direct`` lab."""
    identity = registry.create_local_first(DIRECT_LAB_ID)
    context = LaunchContext(
        launch_request_id=identity.launch_request_id,
        attempt_id=identity.attempt_id,
        idempotency_key=identity.idempotency_key,
        lab_id=DIRECT_LAB_ID,
        source=LaunchSource.DIRECT,
        requested_at=format_iso(now()),
    )
    return _with_policy(context, policy)


class RegistryLineageValidator:
    """LineageValidator backed by an AttemptIdentityRegistry.

    Beyond presence checks, a context whose launch request id the registry
    knows must carry that identity's attempt id (local or canonical) and
    idempotency key. Unknown launch request ids (host-allocated) pass.
    """

    def __init__(self, registry: AttemptIdentityRegistry) -> None:
        self._registry = registry

    def rejection_reason(
        self,
        context: LaunchContext | None,
        *,
        require_resolved_version_id: bool = False,
    ) -> str | None:
        if context is None:
            return "missing launch context"
        context = context.normalized()

        if not context.launch_request_id:
            return "launchRequestId is required"
        if not context.attempt_id:
            return "attempt_id is required"
        if not context.idempotency_key:
            return "idempotency_key is required"
        if not context.lab_id:
            return "lab_id is required"
        if require_resolved_version_id and not context.resolved_version_id:
            return "resolvedVersionId is required"

        identity = self._registry.try_get(context.launch_request_id)
        if identity is not None:
            if context.attempt_id not in (identity.attempt_id, identity.canonical_attempt_id):
                return "attempt_id does not match the registered attempt identity"
            if context.idempotency_key != identity.idempotency_key:
                return "idempotency_key does not match the registered attempt identity"
        return None


def is_external_online_launch(context: LaunchContext) -> bool:
    return context.source is LaunchSource.BRIDGE or bool(context.runtime_url.strip()) or context.launched_from_cache


def runtime_rejection_reason(context: LaunchContext | None, validator: RegistryLineageValidator) -> str | None:
    """Lineage rules plus the online and cache launch rules.

    Online launches (bridge, a runtime URL, or a cache launch) need a resolved
    version; online launches not served from cache also need a runtime URL.
    """
    reason = validator.rejection_reason(context)
    if reason is not None or context is None:
        return reason
    context = context.normalized()

    online = is_external_online_launch(context)
    if online and not context.resolved_version_id:
        return "resolvedVersionId is required for online launches"
    if online and not context.launched_from_cache and not context.runtime_url:
        return "runtimeUrl is required for online launches unless launchedFromCache is true"
    if context.launched_from_cache and not context.resolved_version_id:
        return "offline cache launch requires a cached resolvedVersionId"
    return None


class BridgePayload(BaseModel):
    """Launch payload as sent by an external host app (camelCase keys).

    Unknown keys are ignored; nulls read as empty.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    contract_version: str | None = Field(default=None, validation_alias=AliasChoices("contractVersion", "contract_version"))
    launch_request_id: str | None = Field(default=None, validation_alias=AliasChoices("launchRequestId", "launch_request_id"))
    attempt_id: str | None = Field(default=None, validation_alias=AliasChoices("attemptId", "attempt_id"))
    idempotency_key: str | None = Field(default=None, validation_alias=AliasChoices("idempotencyKey", "idempotency_key"))
    lab_id: str | None = Field(default=None, validation_alias=AliasChoices("labId", "lab_id"))
    address_key: str | None = Field(default=None, validation_alias=AliasChoices("addressKey", "address_key"))
    resolved_version_id: str | None = Field(
        default=None, validation_alias=AliasChoices("resolvedVersionId", "resolved_version_id")
    )
    runtime_url: str | None = Field(default=None, validation_alias=AliasChoices("runtimeUrl", "runtime_url"))
    launched_from_cache: bool = Field(default=False, validation_alias=AliasChoices("launchedFromCache", "launched_from_cache"))
    allow_offline_cache_launch: bool = Field(
        default=False, validation_alias=AliasChoices("allowOfflineCacheLaunch", "allow_offline_cache_launch")
    )
    allow_older_cached_same_lab: bool = Field(
        default=False, validation_alias=AliasChoices("allowOlderCachedSameLab", "allow_older_cached_same_lab")
    )
    network_required_if_cache_miss: bool = Field(
        default=False, validation_alias=AliasChoices("networkRequiredIfCacheMiss", "network_required_if_cache_miss")
    )
    requested_at: str | None = Field(default=None, validation_alias=AliasChoices("requestedAt", "requested_at"))

    def to_context(self) -> LaunchContext:
        return LaunchContext(
            contract_version=self.contract_version or LAUNCH_CONTRACT_VERSION,
            launch_request_id=self.launch_request_id or "",
            attempt_id=self.attempt_id or "",
            idempotency_key=self.idempotency_key or "",
            lab_id=self.lab_id or "",
            address_key=self.address_key or "",
            resolved_version_id=self.resolved_version_id or "",
            runtime_url=self.runtime_url or "",
            launched_from_cache=self.launched_from_cache,
            allow_offline_cache_launch=self.allow_offline_cache_launch,
            allow_older_cached_same_lab=self.allow_older_cached_same_lab,
            network_required_if_cache_miss=self.network_required_if_cache_miss,
            source=LaunchSource.BRIDGE,
            requested_at=self.requested_at or "",
        ).normalized()


def parse_bridge_payload(
    json_text: str | None,
    registry: AttemptIdentityRegistry,
    *,
    now: UtcNow = utc_now,
) -> LaunchContext | None:
    """Parse a host-app launch payload into a bridge-sourced LaunchContext.

    Missing lineage ids are filled from a fresh local-first identity, and a
    missing ``requestedAt`` is stamped now.

    Returns:
        The context, or None (with a warning) for blank or malformed payloads
    """
    if json_text is None or not json_text.strip():
        logger.warning("Bridge launch payload is empty")
        return None
    try:
        payload = BridgePayload.model_validate_json(json_text)
    except ValidationError as e:
        logger.warning("Bridge launch payload rejected", error_count=e.error_count(), errors=str(e))
        return None

    context = payload.to_context()
    if not context.requested_at:
        context = replace(context, requested_at=format_iso(now()))

    if not context.launch_request_id:
        # A locally allocated launch request id only validates with its own attempt id and key
        local = registry.create_local_first(context.lab_id)
        if context.attempt_id or context.idempotency_key:
            logger.warning(
                "Bridge payload lineage replaced by local identity",
                payload_attempt_id=context.attempt_id,
                launch_request_id=local.launch_request_id,
            )
        context = replace(
            context,
            launch_request_id=local.launch_request_id,
            attempt_id=local.attempt_id,
            idempotency_key=local.idempotency_key,
        )
    elif not (context.attempt_id and context.idempotency_key):
        local = registry.create_local_first(context.lab_id)
        context = replace(
            context,
            attempt_id=context.attempt_id or local.attempt_id,
            idempotency_key=context.idempotency_key or local.idempotency_key,
        )
    return context
