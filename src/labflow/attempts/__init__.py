"""Attempt identities and launch contexts."""

from labflow.attempts.context import (
    BridgePayload,
    RegistryLineageValidator,
    create_direct_context,
    create_menu_context,
    parse_bridge_payload,
    runtime_rejection_reason,
)
from labflow.attempts.registry import AttemptIdentityRegistry
from labflow.attempts.service import LaunchContextService

__all__ = [
    "AttemptIdentityRegistry",
    "BridgePayload",
    "LaunchContextService",
    "RegistryLineageValidator",
    "create_direct_context",
    "create_menu_context",
    "parse_bridge_payload",
    "runtime_rejection_reason",
]
