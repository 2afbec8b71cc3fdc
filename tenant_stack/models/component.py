"""Component health models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ComponentHealth(str, Enum):
    """Classified health of one tenant workload."""
    RUNNING = "running"
    PENDING = "pending"
    ERROR = "error"
    UNHEALTHY = "unhealthy"
    UNAVAILABLE = "unavailable"      # Workload exists but reports no status
    UNKNOWN = "unknown"              # No classification rule matched


class ComponentStatus(BaseModel):
    """Live health of a component, derived from cluster state on every query."""

    name: str = Field(..., description="Component name (postgres, minio, backend, frontend)")
    status: ComponentHealth
    message: Optional[str] = Field(None, description="Human-readable detail")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "backend",
                "status": "pending",
                "message": "1 replicas are not yet ready",
            }
        }
