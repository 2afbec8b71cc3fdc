"""
Tenant lifecycle management.

Coordinates credential generation, manifest building, the resource
orchestrator and the status reconciler to create, list and delete tenants.

Guarantees:
- At most one create or delete runs per tenant id at a time.
- Create and delete run in a shielded task: if the initiating request is
  cancelled, the operation still finishes, including status persistence and
  the compensating namespace delete after a failed create.
- A failed create leaves the tenant in ``error`` and issues exactly one
  namespace delete; a failure of that delete is logged and never replaces the
  provisioning error.
- The namespace delete is issued even when the store cannot record the
  outcome (error or ready); the store failure then propagates.
"""

import asyncio
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from tenant_stack.errors import (
    DeletionError,
    InvalidTransitionError,
    ProvisioningError,
    TenantNotFoundError,
    TenantValidationError,
)
from tenant_stack.models.component import ComponentStatus
from tenant_stack.models.tenant import (
    MAX_TENANT_NAME_LENGTH,
    ClusterCleanup,
    TenantCreate,
    TenantDeletion,
    TenantRecord,
    TenantResponse,
    TenantStatus,
    namespace_for,
)
from tenant_stack.services.credentials import generate_credentials
from tenant_stack.services.manifest_builder import (
    ManifestConfig,
    TenantManifests,
    access_url,
    build_tenant_manifests,
    validate_tenant_id,
)
from tenant_stack.services.resource_orchestrator import ResourceOrchestrator
from tenant_stack.services.saga import Saga, SagaStep
from tenant_stack.services.status_reconciler import StatusReconciler
from tenant_stack.services.tenant_store import TenantStore
from tenant_stack.utils.logging import get_logger

logger = get_logger(__name__, prefix="Tenant")

T = TypeVar("T")


def new_tenant_id() -> str:
    return str(uuid.uuid4())


class TenantLocks:
    """Per-tenant-id mutual exclusion; idle locks are dropped."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        self._holders[tenant_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[tenant_id] -= 1
            if not self._holders[tenant_id]:
                del self._holders[tenant_id]
                self._locks.pop(tenant_id, None)

    def is_locked(self, tenant_id: str) -> bool:
        lock = self._locks.get(tenant_id)
        return lock is not None and lock.locked()


class TenantManager:
    """Creates, lists and deletes tenants on behalf of their owners."""

    def __init__(
        self,
        store: TenantStore,
        orchestrator: ResourceOrchestrator,
        reconciler: StatusReconciler,
        manifest_config: ManifestConfig,
        id_factory: Callable[[], str] = new_tenant_id,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.reconciler = reconciler
        self.manifest_config = manifest_config
        self._id_factory = id_factory
        self._locks = TenantLocks()
        self._inflight: Set["asyncio.Task[Any]"] = set()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_tenant(self, owner_id: str, data: TenantCreate) -> TenantResponse:
        """
        Create a tenant and provision its stack.

        Provisioning failures do not raise: the tenant comes back in ``error``
        with no access URL.

        Raises:
            TenantValidationError: invalid name (nothing is persisted or applied)
        """
        name = self._validate_name(data.name)
        tenant_id = validate_tenant_id(self._id_factory())

        record = await self._run_to_completion(self._provision(owner_id, tenant_id, name))
        return self._to_response(record)

    async def _provision(self, owner_id: str, tenant_id: str, name: str) -> TenantRecord:
        async with self._locks.hold(tenant_id):
            record = await self.store.create(TenantRecord(
                id=tenant_id,
                name=name,
                owner_id=owner_id,
                status=TenantStatus.PROVISIONING,
            ))
            logger.info(f"Provisioning tenant {tenant_id} ({name}) for owner {owner_id}")

            credentials = generate_credentials()
            manifests = build_tenant_manifests(tenant_id, self.manifest_config, credentials)
            saga = self.provisioning_saga(manifests)

            try:
                await saga.run()
            except ProvisioningError as e:
                logger.error(f"Provisioning tenant {tenant_id} failed at '{saga.failed_step}': {e}")
                try:
                    record = await self._transition(record, TenantStatus.ERROR)
                finally:
                    await self._compensate(saga, tenant_id)
                return record

            try:
                record = await self._transition(
                    record,
                    TenantStatus.READY,
                    postgres_password=credentials.postgres_password,
                    minio_access_key=credentials.minio_access_key,
                    minio_secret_key=credentials.minio_secret_key,
                )
            except Exception as e:
                logger.error(f"Recording tenant {tenant_id} as ready failed, reclaiming namespace: {e}")
                await self._compensate(saga, tenant_id)
                await self._mark_error(record)
                raise

            logger.info(f"Tenant {tenant_id} ready at {self._access_url(record)}")
            return record

    async def _compensate(self, saga: Saga, tenant_id: str) -> None:
        for error in await saga.compensate():
            logger.error(f"Cleanup of tenant {tenant_id} incomplete: {error}")

    async def _mark_error(self, record: TenantRecord) -> None:
        """Best-effort ERROR update after a failed READY write; the original error wins."""
        try:
            await self._transition(record, TenantStatus.ERROR)
        except Exception as e:
            logger.error(f"Could not record tenant {record.id} as error: {e}")

    def provisioning_saga(self, manifests: TenantManifests) -> Saga:
        """Namespace first (undone by deleting it), then everything inside it."""
        async def create_namespace() -> None:
            await self.orchestrator.create_namespace(manifests)

        async def delete_namespace() -> None:
            await self.orchestrator.delete_namespace(manifests.tenant_id)

        async def create_resources() -> None:
            await self.orchestrator.create_resources(manifests)

        return Saga(
            name=f"provision {manifests.namespace_name}",
            steps=[
                SagaStep("namespace", create_namespace, compensation=delete_namespace),
                SagaStep("resources", create_resources),
            ],
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_tenant(self, owner_id: str, tenant_id: str) -> TenantDeletion:
        """
        Delete an owned tenant's namespace and record.

        The record is removed even when the namespace delete fails; the
        outcome reports the failure.

        Raises:
            TenantNotFoundError: no such tenant for this owner
        """
        return await self._run_to_completion(self._delete(owner_id, tenant_id))

    async def _delete(self, owner_id: str, tenant_id: str) -> TenantDeletion:
        async with self._locks.hold(tenant_id):
            record = await self.store.get(tenant_id, owner_id)
            if record is None:
                raise TenantNotFoundError(tenant_id)

            # Error (and stale provisioning) records keep their status until removed
            if record.status.can_transition_to(TenantStatus.DELETING):
                record = await self._transition(record, TenantStatus.DELETING)

            message: Optional[str] = None
            try:
                cleanup = await self.orchestrator.delete_namespace(tenant_id)
            except DeletionError as e:
                # TODO: keep the record in 'deleting' for a retry sweep instead of
                # removing it; cluster resources leak when this path is taken.
                logger.error(f"Failed to delete cluster resources for tenant {tenant_id}: {e}")
                cleanup = ClusterCleanup.FAILED
                message = str(e)

            await self.store.delete(tenant_id, owner_id)
            logger.info(f"Deleted tenant {tenant_id} (cluster cleanup: {cleanup.value})")
            return TenantDeletion(
                id=tenant_id,
                namespace=namespace_for(tenant_id),
                cluster_cleanup=cleanup,
                message=message,
            )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def list_tenants(self, owner_id: str) -> List[TenantResponse]:
        """Owned tenants; ready ones include live component health."""
        records = await self.store.list_for_owner(owner_id)
        return list(await asyncio.gather(*(self._describe(record) for record in records)))

    async def get_tenant(self, owner_id: str, tenant_id: str) -> TenantResponse:
        record = await self._get_owned(owner_id, tenant_id)
        return await self._describe(record)

    async def get_component_statuses(self, owner_id: str, tenant_id: str) -> List[ComponentStatus]:
        record = await self._get_owned(owner_id, tenant_id)
        return await self.reconciler.get_component_statuses(record.id)

    async def wait_idle(self) -> None:
        """Wait for in-flight creates and deletes, e.g. before shutdown."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run_to_completion(self, coro: Awaitable[T]) -> T:
        """Run coro in its own task that keeps going if the caller is cancelled."""
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Nobody awaits the result any more; surface its failure here
            task.add_done_callback(self._log_orphaned_failure)
            raise

    @staticmethod
    def _log_orphaned_failure(task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Operation failed after its caller went away: {type(error).__name__}: {error}")

    async def _transition(self, record: TenantRecord, target: TenantStatus, **fields: Any) -> TenantRecord:
        if not record.status.can_transition_to(target):
            raise InvalidTransitionError(record.id, record.status.value, target.value)
        updated = await self.store.update(record.id, record.owner_id, status=target, **fields)
        if updated is None:
            raise TenantNotFoundError(record.id)
        return updated

    async def _get_owned(self, owner_id: str, tenant_id: str) -> TenantRecord:
        record = await self.store.get(tenant_id, owner_id)
        if record is None:
            raise TenantNotFoundError(tenant_id)
        return record

    async def _describe(self, record: TenantRecord) -> TenantResponse:
        statuses: List[ComponentStatus] = []
        if record.status is TenantStatus.READY:
            statuses = await self.reconciler.get_component_statuses(record.id)
        return self._to_response(record, statuses)

    def _access_url(self, record: TenantRecord) -> Optional[str]:
        if record.status is not TenantStatus.READY:
            return None
        return access_url(record.id, self.manifest_config.domain, self.manifest_config.use_tls)

    def _to_response(
        self,
        record: TenantRecord,
        component_statuses: Optional[List[ComponentStatus]] = None,
    ) -> TenantResponse:
        return TenantResponse(
            id=record.id,
            name=record.name,
            status=record.status,
            access_url=self._access_url(record),
            created_at=record.created_at,
            updated_at=record.updated_at,
            secrets=record.secrets(),
            component_statuses=component_statuses or [],
        )

    @staticmethod
    def _validate_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise TenantValidationError("Tenant name must not be empty")
        if len(name) > MAX_TENANT_NAME_LENGTH:
            raise TenantValidationError(
                f"Tenant name must be at most {MAX_TENANT_NAME_LENGTH} characters"
            )
        return name
