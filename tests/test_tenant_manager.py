"""
Unit tests for TenantManager: create, delete, list and their guarantees.

The cluster is a set of MagicMock API groups and the store is in-memory,
both from conftest.
"""

import asyncio
import logging
import threading

import pytest
from pymongo.errors import PyMongoError

from conftest import (
    OTHER_OWNER_ID,
    OWNER_ID,
    TENANT_ID,
    api_error,
    k8s_call_names,
)
from tenant_stack.errors import (
    InvalidTransitionError,
    TenantNotFoundError,
    TenantValidationError,
)
from tenant_stack.models.component import ComponentHealth
from tenant_stack.models.tenant import (
    ClusterCleanup,
    TenantCreate,
    TenantRecord,
    TenantStatus,
)

ACME = TenantCreate(name="Acme")


def _create_calls(k8s_api):
    return [name for name in k8s_call_names(k8s_api) if ".create_" in name]


def _fail_status_writes(store, status):
    """Make store updates that set `status` raise, as if the database went away."""
    update = store.update

    async def failing_update(tenant_id, owner_id, **fields):
        if fields.get("status") is status:
            raise PyMongoError("connection closed")
        return await update(tenant_id, owner_id, **fields)

    store.update = failing_update


async def _wait_until_called(mock):
    while not mock.called:
        await asyncio.sleep(0.01)


# =============================================================================
# Create
# =============================================================================

@pytest.mark.unit
class TestCreateTenant:

    @pytest.mark.asyncio
    async def test_successful_create_is_ready(self, manager, store, k8s_api):
        tenant = await manager.create_tenant(OWNER_ID, ACME)

        assert tenant.id == TENANT_ID
        assert tenant.name == "Acme"
        assert tenant.status is TenantStatus.READY
        assert tenant.access_url == "https://acme-id.cluster.example"
        assert _create_calls(k8s_api) == (
            ["core.create_namespace"]
            + ["apps.create_namespaced_stateful_set"] * 2
            + ["apps.create_namespaced_deployment"] * 2
            + ["core.create_namespaced_service"] * 4
            + ["networking.create_namespaced_ingress"] * 2
        )
        assert store.status_history[TENANT_ID] == ["provisioning", "ready"]

    @pytest.mark.asyncio
    async def test_credentials_are_stored_and_returned(self, manager, store, k8s_api):
        tenant = await manager.create_tenant(OWNER_ID, ACME)

        record = store.records[TENANT_ID]
        secrets = {s.key: s.value for s in tenant.secrets}
        assert secrets == {
            "postgresPassword": record.postgres_password,
            "minioAccessKey": record.minio_access_key,
            "minioSecretKey": record.minio_secret_key,
        }
        postgres = k8s_api.apps.create_namespaced_stateful_set.call_args_list[0].kwargs["body"]
        env = postgres["spec"]["template"]["spec"]["containers"][0]["env"]
        assert {"name": "POSTGRES_PASSWORD", "value": record.postgres_password} in env

    @pytest.mark.asyncio
    async def test_resource_failure_ends_in_error_with_one_cleanup(self, manager, store, k8s_api):
        k8s_api.networking.create_namespaced_ingress.side_effect = api_error(422, "Invalid host")

        tenant = await manager.create_tenant(OWNER_ID, ACME)

        assert tenant.status is TenantStatus.ERROR
        assert tenant.access_url is None
        assert k8s_api.core.delete_namespace.call_count == 1
        assert k8s_api.core.delete_namespace.call_args.args == ("tenant-acme-id",)
        assert store.status_history[TENANT_ID] == ["provisioning", "error"]

    @pytest.mark.asyncio
    async def test_namespace_failure_still_cleans_up(self, manager, k8s_api):
        k8s_api.core.create_namespace.side_effect = asyncio.TimeoutError()

        tenant = await manager.create_tenant(OWNER_ID, ACME)

        assert tenant.status is TenantStatus.ERROR
        assert k8s_api.core.delete_namespace.call_count == 1
        assert not k8s_api.apps.create_namespaced_stateful_set.called

    @pytest.mark.asyncio
    async def test_failed_cleanup_keeps_error_status(self, manager, store, k8s_api):
        k8s_api.apps.create_namespaced_deployment.side_effect = api_error(500, "Internal Server Error")
        k8s_api.core.delete_namespace.side_effect = api_error(503, "Service Unavailable")

        tenant = await manager.create_tenant(OWNER_ID, ACME)

        assert tenant.status is TenantStatus.ERROR
        assert store.records[TENANT_ID].status is TenantStatus.ERROR
        assert k8s_api.core.delete_namespace.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", "x" * 101])
    async def test_invalid_name_touches_nothing(self, manager, store, k8s_api, name):
        with pytest.raises(TenantValidationError):
            await manager.create_tenant(OWNER_ID, TenantCreate(name=name))

        assert store.records == {}
        assert k8s_call_names(k8s_api) == []

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_interrupt_provisioning(self, manager, store, k8s_api):
        released = threading.Event()
        k8s_api.core.create_namespace.side_effect = lambda **kwargs: released.wait(5)

        task = asyncio.create_task(manager.create_tenant(OWNER_ID, ACME))
        await _wait_until_called(k8s_api.core.create_namespace)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        released.set()
        await manager.wait_idle()

        assert store.records[TENANT_ID].status is TenantStatus.READY
        assert k8s_api.networking.create_namespaced_ingress.call_count == 2

    @pytest.mark.asyncio
    async def test_failure_after_cancelled_caller_is_logged(self, manager, store, k8s_api, caplog):
        released = threading.Event()
        k8s_api.core.create_namespace.side_effect = lambda **kwargs: released.wait(5)
        _fail_status_writes(store, TenantStatus.READY)

        task = asyncio.create_task(manager.create_tenant(OWNER_ID, ACME))
        await _wait_until_called(k8s_api.core.create_namespace)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with caplog.at_level(logging.ERROR, logger="tenant_stack.services.tenant_manager"):
            released.set()
            await manager.wait_idle()

        assert "failed after its caller went away: PyMongoError" in caplog.text
        assert k8s_api.core.delete_namespace.call_count == 1


# =============================================================================
# Store failures during create
# =============================================================================

@pytest.mark.unit
class TestCreateStoreFailures:

    @pytest.mark.asyncio
    async def test_error_write_failure_still_cleans_up(self, manager, store, k8s_api):
        k8s_api.networking.create_namespaced_ingress.side_effect = api_error(422, "Invalid host")
        _fail_status_writes(store, TenantStatus.ERROR)

        with pytest.raises(PyMongoError):
            await manager.create_tenant(OWNER_ID, ACME)

        assert k8s_api.core.delete_namespace.call_count == 1

    @pytest.mark.asyncio
    async def test_ready_write_failure_reclaims_namespace(self, manager, store, k8s_api):
        _fail_status_writes(store, TenantStatus.READY)

        with pytest.raises(PyMongoError):
            await manager.create_tenant(OWNER_ID, ACME)

        assert k8s_api.core.delete_namespace.call_count == 1
        assert k8s_api.core.delete_namespace.call_args.args == ("tenant-acme-id",)
        assert store.records[TENANT_ID].status is TenantStatus.ERROR
        assert store.records[TENANT_ID].postgres_password is None

    @pytest.mark.asyncio
    async def test_store_down_after_apply_reclaims_namespace(self, manager, store, k8s_api):
        _fail_status_writes(store, TenantStatus.READY)
        _fail_status_writes(store, TenantStatus.ERROR)

        with pytest.raises(PyMongoError):
            await manager.create_tenant(OWNER_ID, ACME)

        assert k8s_api.core.delete_namespace.call_count == 1


# =============================================================================
# Delete
# =============================================================================

@pytest.mark.unit
class TestDeleteTenant:

    @pytest.mark.asyncio
    async def test_delete_ready_tenant(self, manager, store, k8s_api):
        await manager.create_tenant(OWNER_ID, ACME)

        result = await manager.delete_tenant(OWNER_ID, TENANT_ID)

        assert result.cluster_cleanup is ClusterCleanup.DELETED
        assert result.namespace == "tenant-acme-id"
        assert result.message is None
        assert TENANT_ID not in store.records
        assert store.status_history[TENANT_ID] == ["provisioning", "ready", "deleting"]

    @pytest.mark.asyncio
    async def test_namespace_already_gone(self, manager, store, k8s_api):
        await manager.create_tenant(OWNER_ID, ACME)
        k8s_api.core.delete_namespace.side_effect = api_error(404, "Not Found")

        result = await manager.delete_tenant(OWNER_ID, TENANT_ID)

        assert result.cluster_cleanup is ClusterCleanup.ALREADY_ABSENT
        assert TENANT_ID not in store.records

    @pytest.mark.asyncio
    async def test_cluster_failure_still_removes_record(self, manager, store, k8s_api):
        await manager.create_tenant(OWNER_ID, ACME)
        k8s_api.core.delete_namespace.side_effect = api_error(500, "Internal Server Error")

        result = await manager.delete_tenant(OWNER_ID, TENANT_ID)

        assert result.cluster_cleanup is ClusterCleanup.FAILED
        assert "Internal Server Error" in result.message
        assert TENANT_ID not in store.records

    @pytest.mark.asyncio
    async def test_error_tenant_is_removed_without_status_change(self, manager, store, k8s_api):
        k8s_api.networking.create_namespaced_ingress.side_effect = api_error(422, "Invalid host")
        await manager.create_tenant(OWNER_ID, ACME)

        await manager.delete_tenant(OWNER_ID, TENANT_ID)

        assert TENANT_ID not in store.records
        assert store.status_history[TENANT_ID] == ["provisioning", "error"]

    @pytest.mark.asyncio
    async def test_other_owner_cannot_delete(self, manager, store, k8s_api):
        await manager.create_tenant(OWNER_ID, ACME)
        k8s_api.reset_mock()

        with pytest.raises(TenantNotFoundError):
            await manager.delete_tenant(OTHER_OWNER_ID, TENANT_ID)

        assert k8s_call_names(k8s_api) == []
        assert store.records[TENANT_ID].status is TenantStatus.READY

    @pytest.mark.asyncio
    async def test_concurrent_deletes_run_once(self, manager, store, k8s_api):
        await manager.create_tenant(OWNER_ID, ACME)

        results = await asyncio.gather(
            manager.delete_tenant(OWNER_ID, TENANT_ID),
            manager.delete_tenant(OWNER_ID, TENANT_ID),
            return_exceptions=True,
        )

        assert results[0].cluster_cleanup is ClusterCleanup.DELETED
        assert isinstance(results[1], TenantNotFoundError)
        assert k8s_api.core.delete_namespace.call_count == 1

    @pytest.mark.asyncio
    async def test_delete_waits_for_inflight_create(self, manager, store, k8s_api):
        released = threading.Event()
        k8s_api.core.create_namespace.side_effect = lambda **kwargs: released.wait(5)

        create = asyncio.create_task(manager.create_tenant(OWNER_ID, ACME))
        await _wait_until_called(k8s_api.core.create_namespace)
        delete = asyncio.create_task(manager.delete_tenant(OWNER_ID, TENANT_ID))
        await asyncio.sleep(0.05)

        assert not delete.done()
        assert not k8s_api.core.delete_namespace.called

        released.set()
        tenant = await create
        result = await delete

        assert tenant.status is TenantStatus.READY
        assert result.cluster_cleanup is ClusterCleanup.DELETED
        calls = k8s_call_names(k8s_api)
        assert calls.count("networking.create_namespaced_ingress") == 2
        assert calls[-1] == "core.delete_namespace"
        assert store.status_history[TENANT_ID] == ["provisioning", "ready", "deleting"]
        assert TENANT_ID not in store.records


# =============================================================================
# Read
# =============================================================================

@pytest.mark.unit
class TestReadTenants:

    @pytest.mark.asyncio
    async def test_list_includes_health_only_for_ready_tenants(self, manager, store, k8s_api):
        await manager.create_tenant(OWNER_ID, ACME)
        await store.create(TenantRecord(
            id="broken-id", name="Broken", owner_id=OWNER_ID, status=TenantStatus.ERROR,
        ))
        await store.create(TenantRecord(
            id="other-id", name="Other", owner_id=OTHER_OWNER_ID, status=TenantStatus.READY,
        ))

        tenants = {t.id: t for t in await manager.list_tenants(OWNER_ID)}

        assert set(tenants) == {TENANT_ID, "broken-id"}
        ready = tenants[TENANT_ID]
        assert ready.access_url == "https://acme-id.cluster.example"
        assert [s.name for s in ready.component_statuses] == ["postgres", "minio", "backend", "frontend"]
        broken = tenants["broken-id"]
        assert broken.access_url is None
        assert broken.component_statuses == []

    @pytest.mark.asyncio
    async def test_component_statuses_for_owned_tenant(self, manager, k8s_api):
        await manager.create_tenant(OWNER_ID, ACME)

        statuses = await manager.get_component_statuses(OWNER_ID, TENANT_ID)

        assert all(s.status is ComponentHealth.RUNNING for s in statuses)

    @pytest.mark.asyncio
    async def test_foreign_tenant_is_not_found(self, manager):
        await manager.create_tenant(OWNER_ID, ACME)

        with pytest.raises(TenantNotFoundError):
            await manager.get_tenant(OTHER_OWNER_ID, TENANT_ID)
        with pytest.raises(TenantNotFoundError):
            await manager.get_component_statuses(OTHER_OWNER_ID, TENANT_ID)


# =============================================================================
# State machine
# =============================================================================

@pytest.mark.unit
class TestTransitions:

    @pytest.mark.parametrize("current, target, allowed", [
        (TenantStatus.PROVISIONING, TenantStatus.READY, True),
        (TenantStatus.PROVISIONING, TenantStatus.ERROR, True),
        (TenantStatus.READY, TenantStatus.DELETING, True),
        (TenantStatus.DELETING, TenantStatus.DELETING, True),
        (TenantStatus.ERROR, TenantStatus.READY, False),
        (TenantStatus.READY, TenantStatus.PROVISIONING, False),
        (TenantStatus.DELETING, TenantStatus.READY, False),
    ])
    def test_transition_table(self, current, target, allowed):
        assert current.can_transition_to(target) is allowed

    @pytest.mark.asyncio
    async def test_error_cannot_become_ready(self, manager, store):
        record = await store.create(TenantRecord(
            id=TENANT_ID, name="Acme", owner_id=OWNER_ID, status=TenantStatus.ERROR,
        ))

        with pytest.raises(InvalidTransitionError):
            await manager._transition(record, TenantStatus.READY)

        assert store.records[TENANT_ID].status is TenantStatus.ERROR
