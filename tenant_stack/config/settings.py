"""
tenant_stack Settings Configuration
Loads configuration from environment variables
"""

from functools import lru_cache
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Environment
    ENV_NAME: str = "tenant-stack"
    NODE_ENV: str = "production"
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS - Can be comma-separated string or list
    CORS_ORIGINS: Union[str, List[str]] = "*"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Tenant record store
    MONGODB_URI: str = "mongodb://mongo:27017"
    MONGODB_DATABASE: str = "tenant_stack"

    # Cluster routing - tenants are served at <tenant-id>.<CLUSTER_DOMAIN>
    CLUSTER_DOMAIN: str
    CLUSTER_USE_TLS: bool

    # Kubernetes API access
    KUBECONFIG: Optional[str] = None
    KUBE_CONTEXT: Optional[str] = None
    KUBE_IN_CLUSTER: bool = False
    K8S_WRITE_TIMEOUT: float = 30.0
    K8S_READ_TIMEOUT: float = 10.0
    INGRESS_CLASS_NAME: Optional[str] = None

    # Tenant workload images
    POSTGRES_IMAGE: str = "postgres:17"
    MINIO_IMAGE: str = "minio/minio:latest"
    BACKEND_IMAGE: str = "snapster-backend:latest"
    FRONTEND_IMAGE: str = "snapster-frontend:latest"
    APP_IMAGE_PULL_POLICY: str = "Never"

    # Values injected into each tenant's backend
    TENANT_JWT_SECRET: str = "change-me"
    TENANT_SALT_ROUNDS: int = 5
    TENANT_UPLOAD_MAX_FILE_SIZE: int = 5248000
    TENANT_STORAGE_BUCKET: str = "default"

    @field_validator("CLUSTER_DOMAIN")
    @classmethod
    def strip_domain(cls, v: str) -> str:
        """Normalise the cluster domain (no surrounding dots or whitespace)."""
        v = v.strip().strip(".")
        if not v:
            raise ValueError("CLUSTER_DOMAIN must not be empty")
        return v

    @property
    def kube_context(self) -> Optional[str]:
        """Kubeconfig context; local development targets minikube by default."""
        if self.KUBE_CONTEXT:
            return self.KUBE_CONTEXT
        if self.NODE_ENV == "development":
            return "minikube"
        return None

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
