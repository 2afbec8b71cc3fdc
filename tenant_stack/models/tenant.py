"""
Tenant Models

A tenant is one customer's isolated application stack plus its metadata
record. The record is owned by the tenant store; everything else (manifests,
component health) is derived from it.

Lifecycle:
    provisioning -> ready | error
    ready -> deleting -> (record removed)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator

from .component import ComponentStatus

NAMESPACE_PREFIX = "tenant-"
MAX_TENANT_NAME_LENGTH = 100


def namespace_for(tenant_id: str) -> str:
    """Cluster namespace that holds every resource of a tenant."""
    return f"{NAMESPACE_PREFIX}{tenant_id}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant."""
    PROVISIONING = "provisioning"    # Record created, cluster resources being applied
    READY = "ready"                  # All resources applied
    ERROR = "error"                  # Provisioning failed, resources reclaimed
    DELETING = "deleting"            # Namespace delete issued

    def can_transition_to(self, target: "TenantStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: Dict[TenantStatus, FrozenSet[TenantStatus]] = {
    TenantStatus.PROVISIONING: frozenset({TenantStatus.READY, TenantStatus.ERROR}),
    TenantStatus.READY: frozenset({TenantStatus.DELETING}),
    TenantStatus.ERROR: frozenset(),
    # Retrying an interrupted delete
    TenantStatus.DELETING: frozenset({TenantStatus.DELETING}),
}


class TenantRecord(BaseModel):
    """Persisted tenant record."""

    id: str = Field(..., description="Immutable tenant identifier")
    name: str = Field(..., description="Display name")
    owner_id: str = Field(..., description="Identity that owns this tenant")
    status: TenantStatus = TenantStatus.PROVISIONING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Generated once at creation, never rotated
    postgres_password: Optional[str] = None
    minio_access_key: Optional[str] = None
    minio_secret_key: Optional[str] = None

    @property
    def namespace(self) -> str:
        return namespace_for(self.id)

    def secrets(self) -> List["TenantSecret"]:
        """Credentials as key/value pairs, skipping any not yet stored."""
        pairs = [
            ("postgresPassword", self.postgres_password),
            ("minioAccessKey", self.minio_access_key),
            ("minioSecretKey", self.minio_secret_key),
        ]
        return [TenantSecret(key=key, value=value) for key, value in pairs if value]


class TenantCreate(BaseModel):
    """Request to create a tenant."""

    name: str = Field(..., description="Display name of the tenant", examples=["My Service"])

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class TenantSecret(BaseModel):
    key: str
    value: str


class TenantResponse(BaseModel):
    """Tenant as returned to its owner."""

    id: str
    name: str
    status: TenantStatus
    access_url: Optional[str] = Field(None, description="Only set while the tenant is ready")
    created_at: datetime
    updated_at: datetime
    secrets: List[TenantSecret] = Field(default_factory=list)
    component_statuses: List[ComponentStatus] = Field(default_factory=list)


class ClusterCleanup(str, Enum):
    """What happened to the tenant namespace on the cluster."""
    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    FAILED = "failed"


class TenantDeletion(BaseModel):
    """Outcome of a tenant delete. The record is removed in every case."""

    id: str
    namespace: str
    cluster_cleanup: ClusterCleanup
    message: Optional[str] = None
