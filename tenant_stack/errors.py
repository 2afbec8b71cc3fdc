"""Domain exceptions for tenant provisioning and lifecycle management."""

import json
from typing import Optional


class TenantStackError(Exception):
    """Base class for all tenant_stack errors."""


class TenantValidationError(TenantStackError):
    """Malformed input, rejected before any call to the cluster."""


class TenantNotFoundError(TenantStackError):
    """The tenant does not exist or is not owned by the requester."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant {tenant_id} not found")
        self.tenant_id = tenant_id


class InvalidTransitionError(TenantStackError):
    """A tenant status change not allowed by the lifecycle state machine."""

    def __init__(self, tenant_id: str, current: str, target: str):
        super().__init__(f"Tenant {tenant_id} cannot move from {current} to {target}")
        self.tenant_id = tenant_id
        self.current = current
        self.target = target


class ProvisioningError(TenantStackError):
    """A create step against the cluster failed (including timeouts)."""

    def __init__(self, kind: str, name: str, detail: str):
        super().__init__(f"Failed to create {kind}/{name}: {detail}")
        self.kind = kind
        self.name = name
        self.detail = detail


class CompensationError(TenantStackError):
    """The compensating cleanup after a provisioning failure failed."""

    def __init__(self, step: str, detail: str):
        super().__init__(f"Compensation for step '{step}' failed: {detail}")
        self.step = step
        self.detail = detail


class DeletionError(TenantStackError):
    """The namespace delete on the normal delete path failed."""

    def __init__(self, namespace: str, detail: str):
        super().__init__(f"Failed to delete namespace {namespace}: {detail}")
        self.namespace = namespace
        self.detail = detail


class ComponentLookupError(TenantStackError):
    """Unclassified fault while reading a workload's live state."""


def describe_api_error(exc: Exception) -> str:
    """
    Extract the most useful message from a Kubernetes API error.

    The API server puts a human-readable `message` (and sometimes field-level
    `causes`) in the JSON response body; fall back to the HTTP reason.
    """
    reason: Optional[str] = getattr(exc, "reason", None)
    body = getattr(exc, "body", None)
    if body:
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, TypeError):
            payload = None
        if isinstance(payload, dict) and payload.get("message"):
            detail = payload["message"]
            causes = (payload.get("details") or {}).get("causes") or []
            if causes:
                cause_msgs = [f"{c.get('field', 'unknown')}: {c.get('message', 'unknown')}" for c in causes]
                detail = f"{detail} | Causes: {'; '.join(cause_msgs)}"
            return detail
    if reason:
        return str(reason)
    return str(exc) or type(exc).__name__
