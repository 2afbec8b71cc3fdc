"""Tenant lifecycle API endpoints."""

import logging
from typing import List

from fastapi import APIRouter, Depends, status

from tenant_stack.dependencies import get_current_owner, get_tenant_manager
from tenant_stack.models.component import ComponentStatus
from tenant_stack.models.tenant import ClusterCleanup, TenantCreate, TenantDeletion, TenantResponse
from tenant_stack.services.tenant_manager import TenantManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    data: TenantCreate,
    owner_id: str = Depends(get_current_owner),
    manager: TenantManager = Depends(get_tenant_manager),
):
    """
    Create a tenant and provision its stack.

    Provisioning failures are reported through the returned tenant's status
    (``error``, no access URL), not as an HTTP error.
    """
    return await manager.create_tenant(owner_id, data)


@router.get("", response_model=List[TenantResponse])
async def list_tenants(
    owner_id: str = Depends(get_current_owner),
    manager: TenantManager = Depends(get_tenant_manager),
):
    """List the caller's tenants with live component health for ready ones."""
    return await manager.list_tenants(owner_id)


@router.get("/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    tenant_id: str,
    owner_id: str = Depends(get_current_owner),
    manager: TenantManager = Depends(get_tenant_manager),
):
    return await manager.get_tenant(owner_id, tenant_id)


@router.get("/{tenant_id}/components", response_model=List[ComponentStatus])
async def get_component_statuses(
    tenant_id: str,
    owner_id: str = Depends(get_current_owner),
    manager: TenantManager = Depends(get_tenant_manager),
):
    """Live health of postgres, minio, backend and frontend."""
    return await manager.get_component_statuses(owner_id, tenant_id)


@router.delete("/{tenant_id}", response_model=TenantDeletion)
async def delete_tenant(
    tenant_id: str,
    owner_id: str = Depends(get_current_owner),
    manager: TenantManager = Depends(get_tenant_manager),
):
    """
    Delete a tenant.

    Always removes the tenant record; ``cluster_cleanup`` tells whether the
    namespace was deleted, already absent, or could not be deleted.
    """
    result = await manager.delete_tenant(owner_id, tenant_id)
    if result.cluster_cleanup is ClusterCleanup.FAILED:
        logger.warning(f"Tenant {tenant_id} removed but namespace cleanup failed: {result.message}")
    return result
