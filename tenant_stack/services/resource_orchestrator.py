"""
Applies tenant manifests to the cluster and deletes tenant namespaces.

Create order is fixed: namespace, StatefulSets, Deployments, Services,
Ingresses. The first failing call aborts the remaining steps; undoing what was
already applied is left to the caller.
"""

import asyncio
from typing import Dict, List, Tuple

from kubernetes.client.rest import ApiException

from tenant_stack.errors import DeletionError, ProvisioningError, describe_api_error
from tenant_stack.models.tenant import ClusterCleanup, namespace_for
from tenant_stack.services.kubernetes_client import KubernetesClients
from tenant_stack.services.manifest_builder import Manifest, ResourceKind, TenantManifests
from tenant_stack.utils.logging import get_logger

logger = get_logger(__name__, prefix="K8s")

# kind -> (API group attribute on KubernetesClients, namespaced create method)
_CREATE_CALLS: Dict[ResourceKind, Tuple[str, str]] = {
    ResourceKind.STATEFUL_SET: ("apps", "create_namespaced_stateful_set"),
    ResourceKind.DEPLOYMENT: ("apps", "create_namespaced_deployment"),
    ResourceKind.SERVICE: ("core", "create_namespaced_service"),
    ResourceKind.INGRESS: ("networking", "create_namespaced_ingress"),
}


class ResourceOrchestrator:
    """Creates and deletes tenant resources through the Kubernetes API."""

    def __init__(self, clients: KubernetesClients):
        self.clients = clients

    async def create_namespace(self, manifests: TenantManifests) -> None:
        """Create the tenant namespace. Raises ProvisioningError on any failure."""
        name = manifests.namespace_name
        await self._create(
            ResourceKind.NAMESPACE,
            name,
            self.clients.core.create_namespace,
            body=manifests.namespace,
        )

    async def create_resource(self, kind: ResourceKind, manifest: Manifest) -> None:
        """Create one namespaced resource. Raises ProvisioningError on any failure."""
        api_attr, method_name = _CREATE_CALLS[kind]
        api = getattr(self.clients, api_attr)
        await self._create(
            kind,
            manifest["metadata"]["name"],
            getattr(api, method_name),
            namespace=manifest["metadata"]["namespace"],
            body=manifest,
        )

    async def create_resources(self, manifests: TenantManifests) -> List[str]:
        """
        Create everything inside the namespace, in dependency order.

        Returns the created resources as ``Kind/name`` strings.
        """
        created = []
        for kind, manifest in manifests.resources():
            await self.create_resource(kind, manifest)
            created.append(f"{kind.value}/{manifest['metadata']['name']}")
        return created

    async def delete_namespace(self, tenant_id: str) -> ClusterCleanup:
        """
        Delete the tenant namespace; the cluster cascades to everything in it.

        A namespace that does not exist is reported as ALREADY_ABSENT.

        Raises:
            DeletionError: for any other API fault or timeout
        """
        namespace = namespace_for(tenant_id)
        try:
            await self.clients.call(
                self.clients.core.delete_namespace,
                namespace,
                timeout=self.clients.write_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                logger.info(f"Namespace {namespace} already absent")
                return ClusterCleanup.ALREADY_ABSENT
            raise DeletionError(namespace, describe_api_error(e)) from e
        except asyncio.TimeoutError as e:
            raise DeletionError(
                namespace, f"timed out after {self.clients.write_timeout:.0f}s"
            ) from e
        except Exception as e:
            raise DeletionError(namespace, describe_api_error(e)) from e

        logger.info(f"Deleted namespace {namespace}")
        return ClusterCleanup.DELETED

    async def _create(self, kind: ResourceKind, name: str, fn, **kwargs) -> None:
        try:
            await self.clients.call(fn, timeout=self.clients.write_timeout, **kwargs)
        except ApiException as e:
            detail = describe_api_error(e)
            logger.error(f"K8s API error creating {kind.value}/{name}: status={e.status}, {detail}")
            raise ProvisioningError(kind.value, name, detail) from e
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out creating {kind.value}/{name}")
            raise ProvisioningError(
                kind.value, name, f"timed out after {self.clients.write_timeout:.0f}s"
            ) from e
        except Exception as e:
            logger.error(f"Error creating {kind.value}/{name}: {type(e).__name__}: {e}")
            raise ProvisioningError(kind.value, name, describe_api_error(e)) from e

        logger.info(f"Created {kind.value} {name}")
