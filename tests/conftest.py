"""
Pytest configuration and shared fixtures for tenant_stack tests.

Provides:
- Mocked Kubernetes API groups bundled as KubernetesClients
- An in-memory TenantStore
- A TenantManager wired to both
"""

from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from tenant_stack.models.tenant import TenantRecord, utcnow
from tenant_stack.services.credentials import TenantCredentials
from tenant_stack.services.kubernetes_client import KubernetesClients
from tenant_stack.services.manifest_builder import ManifestConfig
from tenant_stack.services.resource_orchestrator import ResourceOrchestrator
from tenant_stack.services.status_reconciler import StatusReconciler
from tenant_stack.services.tenant_manager import TenantManager
from tenant_stack.services.tenant_store import TenantStore

TENANT_ID = "acme-id"
OWNER_ID = "user-123"
OTHER_OWNER_ID = "user-456"
DOMAIN = "cluster.example"


# =============================================================================
# Store Fixtures
# =============================================================================

class InMemoryTenantStore(TenantStore):
    """Dict-backed TenantStore for tests."""

    def __init__(self):
        self.records: Dict[str, TenantRecord] = {}
        self.status_history: Dict[str, List[str]] = {}

    async def create(self, record: TenantRecord) -> TenantRecord:
        self.records[record.id] = record
        self.status_history[record.id] = [record.status.value]
        return record

    async def get(self, tenant_id: str, owner_id: str) -> Optional[TenantRecord]:
        record = self.records.get(tenant_id)
        if record is None or record.owner_id != owner_id:
            return None
        return record

    async def list_for_owner(self, owner_id: str) -> List[TenantRecord]:
        return [r for r in self.records.values() if r.owner_id == owner_id]

    async def update(self, tenant_id: str, owner_id: str, **fields: Any) -> Optional[TenantRecord]:
        record = await self.get(tenant_id, owner_id)
        if record is None:
            return None
        updated = record.model_copy(update={**fields, "updated_at": utcnow()})
        self.records[tenant_id] = updated
        if "status" in fields:
            self.status_history[tenant_id].append(updated.status.value)
        return updated

    async def delete(self, tenant_id: str, owner_id: str) -> bool:
        if await self.get(tenant_id, owner_id) is None:
            return False
        del self.records[tenant_id]
        return True


@pytest.fixture
def store() -> InMemoryTenantStore:
    return InMemoryTenantStore()


# =============================================================================
# Kubernetes Fixtures
# =============================================================================

@pytest.fixture
def k8s_api():
    """
    Parent mock for all API groups.

    ``k8s_api.mock_calls`` records calls across core/apps/networking in order.
    """
    api = MagicMock()
    api.apps.read_namespaced_deployment.return_value = running_deployment()
    return api


@pytest.fixture
def k8s_clients(k8s_api) -> KubernetesClients:
    return KubernetesClients(
        core=k8s_api.core,
        apps=k8s_api.apps,
        networking=k8s_api.networking,
        write_timeout=30.0,
        read_timeout=10.0,
    )


@pytest.fixture
def manifest_config() -> ManifestConfig:
    return ManifestConfig(domain=DOMAIN, use_tls=True)


@pytest.fixture
def credentials() -> TenantCredentials:
    return TenantCredentials(
        postgres_password="a" * 32,
        minio_access_key="b" * 32,
        minio_secret_key="c" * 64,
    )


@pytest.fixture
def orchestrator(k8s_clients) -> ResourceOrchestrator:
    return ResourceOrchestrator(k8s_clients)


@pytest.fixture
def reconciler(k8s_clients) -> StatusReconciler:
    return StatusReconciler(k8s_clients)


@pytest.fixture
def manager(store, orchestrator, reconciler, manifest_config) -> TenantManager:
    return TenantManager(
        store=store,
        orchestrator=orchestrator,
        reconciler=reconciler,
        manifest_config=manifest_config,
        id_factory=lambda: TENANT_ID,
    )


# =============================================================================
# Test Data Helpers
# =============================================================================

def api_error(status: int, reason: str = "Error") -> ApiException:
    return ApiException(status=status, reason=reason)


def workload(status: Optional[SimpleNamespace] = None) -> SimpleNamespace:
    """
    Stand-in for a read V1Deployment or V1StatefulSet.

    Only `.status` is consumed, so the client models (which validate `spec`)
    are not needed.
    """
    return SimpleNamespace(status=status)


def running_deployment(replicas: int = 1) -> SimpleNamespace:
    return workload(SimpleNamespace(
        replicas=replicas,
        available_replicas=replicas,
        updated_replicas=replicas,
        ready_replicas=replicas,
    ))


def k8s_call_names(k8s_api) -> List[str]:
    """Names of calls made on the mocked API groups, e.g. 'core.create_namespace'."""
    return [name for name, _, _ in k8s_api.mock_calls if name]


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
