"""Pydantic models for tenants and component health."""

from .component import ComponentHealth, ComponentStatus
from .tenant import (
    ClusterCleanup,
    TenantCreate,
    TenantDeletion,
    TenantRecord,
    TenantResponse,
    TenantSecret,
    TenantStatus,
    namespace_for,
)

__all__ = [
    "ComponentHealth",
    "ComponentStatus",
    "ClusterCleanup",
    "TenantCreate",
    "TenantDeletion",
    "TenantRecord",
    "TenantResponse",
    "TenantSecret",
    "TenantStatus",
    "namespace_for",
]
