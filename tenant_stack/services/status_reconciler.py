"""
Component health from live cluster state.

A component is looked up as a Deployment first and then as a StatefulSet.
Each lookup yields a tagged result instead of raising on 404. The workload's
status is then run through an ordered rule table; the first matching rule
decides the health.

Status queries never raise: lookup faults and timeouts become an ``error``
status carrying the fault message.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from kubernetes.client.rest import ApiException

from tenant_stack.errors import ComponentLookupError, describe_api_error
from tenant_stack.models.component import ComponentHealth, ComponentStatus
from tenant_stack.models.tenant import namespace_for
from tenant_stack.services.kubernetes_client import KubernetesClients
from tenant_stack.services.manifest_builder import COMPONENTS
from tenant_stack.utils.logging import get_logger

logger = get_logger(__name__, prefix="Status")

PROGRESSING_REASONS = frozenset({"NewReplicaSetAvailable", "ReplicaSetUpdated"})


class WorkloadKind(str, Enum):
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"


@dataclass(frozen=True)
class Condition:
    type: str
    status: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class ReplicaCounts:
    """Normalised replica counters of a workload; missing counters read as 0."""

    desired: int = 0
    available: int = 0
    ready: int = 0
    updated: int = 0
    current: int = 0
    unavailable: int = 0
    collisions: int = 0
    conditions: Tuple[Condition, ...] = ()

    @classmethod
    def from_status(cls, status: Any) -> "ReplicaCounts":
        """Build from a V1DeploymentStatus or V1StatefulSetStatus."""
        def count(attr: str) -> int:
            return getattr(status, attr, None) or 0

        conditions = tuple(
            Condition(type=c.type, status=c.status, reason=getattr(c, "reason", None))
            for c in (getattr(status, "conditions", None) or [])
        )
        return cls(
            desired=count("replicas"),
            available=count("available_replicas"),
            ready=count("ready_replicas"),
            updated=count("updated_replicas"),
            current=count("current_replicas"),
            unavailable=count("unavailable_replicas"),
            collisions=count("collision_count"),
            conditions=conditions,
        )

    def has_condition(self, type_: str, status: Optional[str] = None) -> bool:
        return any(
            c.type == type_ and (status is None or c.status == status)
            for c in self.conditions
        )

    @property
    def not_ready(self) -> int:
        return max(self.desired - self.available, 0)


@dataclass(frozen=True)
class HealthRule:
    """One row of a classification table."""

    health: ComponentHealth
    matches: Callable[[ReplicaCounts], bool]
    message: Callable[[ReplicaCounts], Optional[str]]


def _error_message(_: ReplicaCounts) -> str:
    return "Pods are in error state"


def _pending_message(counts: ReplicaCounts) -> str:
    return f"{counts.not_ready} replicas are not yet ready"


def _unhealthy_message(_: ReplicaCounts) -> str:
    return "Pods are unhealthy"


def _no_message(_: ReplicaCounts) -> None:
    return None


def _deployment_failed(c: ReplicaCounts) -> bool:
    return c.collisions > 0 or c.has_condition("Failed")


def _deployment_running(c: ReplicaCounts) -> bool:
    return (
        c.available == c.desired
        and c.updated == c.desired
        and c.ready == c.desired
        and c.unavailable == 0
    )


def _deployment_pending(c: ReplicaCounts) -> bool:
    progressing = any(
        cond.type == "Progressing" and cond.status == "True" and cond.reason in PROGRESSING_REASONS
        for cond in c.conditions
    )
    rolling = 0 < c.updated < c.desired
    catching_up = c.ready < c.desired and c.available < c.desired
    return progressing or rolling or catching_up


def _deployment_unhealthy(c: ReplicaCounts) -> bool:
    return c.unavailable > 0 or c.updated < c.desired or c.ready < c.desired


def _stateful_set_running(c: ReplicaCounts) -> bool:
    return c.available == c.desired and c.ready == c.desired and c.current == c.desired


def _stateful_set_pending(c: ReplicaCounts) -> bool:
    return c.available < c.desired or c.ready < c.desired or c.current < c.desired


def _stateful_set_unhealthy(c: ReplicaCounts) -> bool:
    return c.has_condition("Progressing", "False")


# Error outranks Running: a Failed condition wins regardless of replica counts.
DEPLOYMENT_RULES: Tuple[HealthRule, ...] = (
    HealthRule(ComponentHealth.ERROR, _deployment_failed, _error_message),
    HealthRule(ComponentHealth.RUNNING, _deployment_running, _no_message),
    HealthRule(ComponentHealth.PENDING, _deployment_pending, _pending_message),
    HealthRule(ComponentHealth.UNHEALTHY, _deployment_unhealthy, _unhealthy_message),
)

STATEFUL_SET_RULES: Tuple[HealthRule, ...] = (
    HealthRule(ComponentHealth.ERROR, lambda c: c.has_condition("Failed"), _error_message),
    HealthRule(ComponentHealth.RUNNING, _stateful_set_running, _no_message),
    HealthRule(ComponentHealth.PENDING, _stateful_set_pending, _pending_message),
    HealthRule(ComponentHealth.UNHEALTHY, _stateful_set_unhealthy, _unhealthy_message),
)

RULES_BY_KIND = {
    WorkloadKind.DEPLOYMENT: DEPLOYMENT_RULES,
    WorkloadKind.STATEFUL_SET: STATEFUL_SET_RULES,
}


def classify(
    counts: ReplicaCounts,
    rules: Sequence[HealthRule],
) -> Tuple[ComponentHealth, Optional[str]]:
    """Return the health of the first matching rule, or UNKNOWN."""
    for rule in rules:
        if rule.matches(counts):
            return rule.health, rule.message(counts)
    return ComponentHealth.UNKNOWN, "Unknown status"


@dataclass(frozen=True)
class WorkloadLookup:
    """Result of reading one workload kind: found (with its status) or not."""

    kind: WorkloadKind
    found: bool
    status: Any = None


class StatusReconciler:
    """Reads workloads from the cluster and classifies their health."""

    LOOKUP_ORDER: Tuple[WorkloadKind, ...] = (WorkloadKind.DEPLOYMENT, WorkloadKind.STATEFUL_SET)

    def __init__(self, clients: KubernetesClients):
        self.clients = clients

    async def get_component_status(self, tenant_id: str, component: str) -> ComponentStatus:
        """Classify one component. Never raises."""
        namespace = namespace_for(tenant_id)
        try:
            for kind in self.LOOKUP_ORDER:
                lookup = await self._lookup(kind, component, namespace)
                if lookup.found:
                    return self._classify_workload(component, lookup)
            return ComponentStatus(
                name=component,
                status=ComponentHealth.ERROR,
                message="Component not found",
            )
        except ComponentLookupError as e:
            logger.warning(f"Status lookup for {namespace}/{component} failed: {e}")
            return ComponentStatus(name=component, status=ComponentHealth.ERROR, message=str(e))

    async def get_component_statuses(
        self,
        tenant_id: str,
        components: Iterable[str] = COMPONENTS,
    ) -> List[ComponentStatus]:
        """Classify several components concurrently, preserving their order."""
        return list(await asyncio.gather(
            *(self.get_component_status(tenant_id, component) for component in components)
        ))

    async def _lookup(self, kind: WorkloadKind, name: str, namespace: str) -> WorkloadLookup:
        if kind is WorkloadKind.DEPLOYMENT:
            read = self.clients.apps.read_namespaced_deployment
        else:
            read = self.clients.apps.read_namespaced_stateful_set

        try:
            workload = await self.clients.call(
                read, name, namespace, timeout=self.clients.read_timeout
            )
        except ApiException as e:
            if e.status == 404:
                return WorkloadLookup(kind=kind, found=False)
            raise ComponentLookupError(describe_api_error(e)) from e
        except asyncio.TimeoutError as e:
            raise ComponentLookupError(
                f"Timed out reading {kind.value} {name} after {self.clients.read_timeout:.0f}s"
            ) from e
        except Exception as e:
            raise ComponentLookupError(describe_api_error(e)) from e

        return WorkloadLookup(kind=kind, found=True, status=getattr(workload, "status", None))

    def _classify_workload(self, component: str, lookup: WorkloadLookup) -> ComponentStatus:
        if lookup.status is None:
            return ComponentStatus(
                name=component,
                status=ComponentHealth.UNAVAILABLE,
                message="No status available",
            )
        health, message = classify(ReplicaCounts.from_status(lookup.status), RULES_BY_KIND[lookup.kind])
        return ComponentStatus(name=component, status=health, message=message)
