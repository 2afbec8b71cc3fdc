"""
Desired-state manifests for a tenant stack.

Pure functions: given a tenant id, configuration values and the tenant's
credentials, build every Kubernetes resource the stack needs. No cluster or
network access happens here, and the same input always yields the same
manifests.

Topology per tenant (all inside namespace ``tenant-<id>``):
- StatefulSets: postgres (5432), minio (9000, console 9001), each with a
  500Mi ``data`` volume claim
- Deployments: backend (3001), frontend (3000)
- ClusterIP Services: one per workload, on its container port
- Ingresses: ``<id>.<domain>`` -> frontend, ``cdn.<id>.<domain>`` -> minio
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import yaml

from tenant_stack.config.settings import Settings
from tenant_stack.errors import TenantValidationError
from tenant_stack.models.tenant import namespace_for
from tenant_stack.services.credentials import (
    POSTGRES_DATABASE,
    POSTGRES_USER,
    TenantCredentials,
)

Manifest = Dict[str, Any]

MANAGED_BY = "tenant-stack"
TENANT_LABEL = "tenant-stack/tenant-id"
STORAGE_SIZE = "500Mi"

POSTGRES = "postgres"
MINIO = "minio"
BACKEND = "backend"
FRONTEND = "frontend"

POSTGRES_PORT = 5432
MINIO_PORT = 9000
MINIO_CONSOLE_PORT = 9001
BACKEND_PORT = 3001
FRONTEND_PORT = 3000

# Components reported by status queries, in display order
COMPONENTS: Tuple[str, ...] = (POSTGRES, MINIO, BACKEND, FRONTEND)

# DNS-1123 label; the namespace name must stay within 63 characters
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_MAX_LABEL_LENGTH = 63


class ResourceKind(str, Enum):
    """Kubernetes kinds the orchestrator creates, in apply order."""
    NAMESPACE = "Namespace"
    STATEFUL_SET = "StatefulSet"
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"
    INGRESS = "Ingress"


@dataclass(frozen=True)
class ManifestConfig:
    """Configuration values the builder needs, detached from Settings."""

    domain: str
    use_tls: bool
    postgres_image: str = "postgres:17"
    minio_image: str = "minio/minio:latest"
    backend_image: str = "snapster-backend:latest"
    frontend_image: str = "snapster-frontend:latest"
    app_image_pull_policy: str = "Never"
    ingress_class_name: Optional[str] = None
    jwt_secret: str = "change-me"
    salt_rounds: int = 5
    upload_max_file_size: int = 5248000
    storage_bucket: str = "default"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ManifestConfig":
        return cls(
            domain=settings.CLUSTER_DOMAIN,
            use_tls=settings.CLUSTER_USE_TLS,
            postgres_image=settings.POSTGRES_IMAGE,
            minio_image=settings.MINIO_IMAGE,
            backend_image=settings.BACKEND_IMAGE,
            frontend_image=settings.FRONTEND_IMAGE,
            app_image_pull_policy=settings.APP_IMAGE_PULL_POLICY,
            ingress_class_name=settings.INGRESS_CLASS_NAME,
            jwt_secret=settings.TENANT_JWT_SECRET,
            salt_rounds=settings.TENANT_SALT_ROUNDS,
            upload_max_file_size=settings.TENANT_UPLOAD_MAX_FILE_SIZE,
            storage_bucket=settings.TENANT_STORAGE_BUCKET,
        )


@dataclass(frozen=True)
class TenantManifests:
    """The complete desired state of one tenant stack."""

    tenant_id: str
    namespace: Manifest
    stateful_sets: Tuple[Manifest, ...]
    deployments: Tuple[Manifest, ...]
    services: Tuple[Manifest, ...]
    ingresses: Tuple[Manifest, ...]

    @property
    def namespace_name(self) -> str:
        return self.namespace["metadata"]["name"]

    def resources(self) -> List[Tuple[ResourceKind, Manifest]]:
        """Everything inside the namespace, in dependency order."""
        ordered: List[Tuple[ResourceKind, Manifest]] = []
        ordered.extend((ResourceKind.STATEFUL_SET, m) for m in self.stateful_sets)
        ordered.extend((ResourceKind.DEPLOYMENT, m) for m in self.deployments)
        ordered.extend((ResourceKind.SERVICE, m) for m in self.services)
        ordered.extend((ResourceKind.INGRESS, m) for m in self.ingresses)
        return ordered

    def to_yaml(self) -> str:
        """Render as a multi-document YAML stream (namespace first)."""
        documents = [self.namespace] + [manifest for _, manifest in self.resources()]
        return yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=True)


def validate_tenant_id(tenant_id: str) -> str:
    """Reject ids that cannot form a namespace name or host label."""
    if not tenant_id:
        raise TenantValidationError("Tenant id must not be empty")
    if not _DNS_LABEL.match(tenant_id) or len(namespace_for(tenant_id)) > _MAX_LABEL_LENGTH:
        raise TenantValidationError(
            f"Tenant id {tenant_id!r} is not a valid DNS label "
            f"(lowercase alphanumerics and '-', namespace at most {_MAX_LABEL_LENGTH} chars)"
        )
    return tenant_id


def tenant_host(tenant_id: str, domain: str, prefix: str = "") -> str:
    host = f"{tenant_id}.{domain}"
    return f"{prefix}.{host}" if prefix else host


def access_url(tenant_id: str, domain: str, use_tls: bool) -> str:
    """Externally reachable URL of a tenant's frontend."""
    scheme = "https" if use_tls else "http"
    return f"{scheme}://{tenant_host(tenant_id, domain)}"


def _labels(tenant_id: str, name: str) -> Dict[str, str]:
    return {
        "app": name,
        "app.kubernetes.io/name": name,
        "app.kubernetes.io/managed-by": MANAGED_BY,
        TENANT_LABEL: tenant_id,
    }


def _env(values: List[Tuple[str, str]]) -> List[Dict[str, str]]:
    return [{"name": key, "value": value} for key, value in values]


def _http_probes(path: str, port: int) -> Dict[str, Any]:
    return {
        "readinessProbe": {
            "httpGet": {"path": path, "port": port},
            "initialDelaySeconds": 5,
            "periodSeconds": 10,
        },
        "livenessProbe": {
            "httpGet": {"path": path, "port": port},
            "initialDelaySeconds": 30,
            "periodSeconds": 10,
        },
    }


def build_namespace(tenant_id: str) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": namespace_for(tenant_id),
            "labels": {
                "app.kubernetes.io/managed-by": MANAGED_BY,
                TENANT_LABEL: tenant_id,
            },
        },
    }


def build_stateful_set(tenant_id: str, name: str, container: Dict[str, Any]) -> Manifest:
    """StatefulSet with a single replica and a dedicated ``data`` volume claim."""
    namespace = namespace_for(tenant_id)
    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": _labels(tenant_id, name),
        },
        "spec": {
            "serviceName": name,
            "replicas": 1,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": _labels(tenant_id, name)},
                "spec": {"containers": [container]},
            },
            "volumeClaimTemplates": [{
                "metadata": {"name": "data", "namespace": namespace},
                "spec": {
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": STORAGE_SIZE}},
                },
            }],
        },
    }


def build_deployment(tenant_id: str, name: str, container: Dict[str, Any]) -> Manifest:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": name,
            "namespace": namespace_for(tenant_id),
            "labels": _labels(tenant_id, name),
        },
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": _labels(tenant_id, name)},
                "spec": {"containers": [container]},
            },
        },
    }


def build_service(tenant_id: str, name: str, port: int) -> Manifest:
    """ClusterIP service exposing a workload's container port under its own name."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": name,
            "namespace": namespace_for(tenant_id),
            "labels": _labels(tenant_id, name),
        },
        "spec": {
            "type": "ClusterIP",
            "selector": {"app": name},
            "ports": [{
                "name": name,
                "port": port,
                "targetPort": port,
                "protocol": "TCP",
            }],
        },
    }


def build_ingress(
    tenant_id: str,
    domain: str,
    service_name: str,
    port: int,
    prefix: str = "",
    ingress_class_name: Optional[str] = None,
) -> Manifest:
    """Route ``[<prefix>.]<tenant>.<domain>`` to one service."""
    name = f"ingress-{prefix}-{tenant_id}" if prefix else f"ingress-{tenant_id}"
    spec: Dict[str, Any] = {
        "rules": [{
            "host": tenant_host(tenant_id, domain, prefix),
            "http": {
                "paths": [{
                    "path": "/",
                    "pathType": "Prefix",
                    "backend": {
                        "service": {
                            "name": service_name,
                            "port": {"number": port},
                        }
                    },
                }]
            },
        }]
    }
    if ingress_class_name:
        spec["ingressClassName"] = ingress_class_name

    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": name,
            "namespace": namespace_for(tenant_id),
            "labels": {
                "app.kubernetes.io/managed-by": MANAGED_BY,
                TENANT_LABEL: tenant_id,
            },
        },
        "spec": spec,
    }


def _postgres_container(config: ManifestConfig, credentials: TenantCredentials) -> Dict[str, Any]:
    ready_check = {
        "exec": {
            "command": ["pg_isready", "-U", POSTGRES_USER, "-d", POSTGRES_DATABASE],
        }
    }
    return {
        "name": POSTGRES,
        "image": config.postgres_image,
        "ports": [{"containerPort": POSTGRES_PORT, "name": POSTGRES}],
        "env": _env([
            ("POSTGRES_USER", POSTGRES_USER),
            ("POSTGRES_PASSWORD", credentials.postgres_password),
            ("POSTGRES_DB", POSTGRES_DATABASE),
        ]),
        "volumeMounts": [{"name": "data", "mountPath": "/var/lib/postgresql/data"}],
        "readinessProbe": {**ready_check, "initialDelaySeconds": 5, "periodSeconds": 10},
        "livenessProbe": {**ready_check, "initialDelaySeconds": 30, "periodSeconds": 10},
    }


def _minio_container(config: ManifestConfig, credentials: TenantCredentials) -> Dict[str, Any]:
    return {
        "name": MINIO,
        "image": config.minio_image,
        "args": ["server", "/data"],
        "ports": [
            {"containerPort": MINIO_PORT, "name": MINIO},
            {"containerPort": MINIO_CONSOLE_PORT, "name": "minio-console"},
        ],
        "env": _env([
            ("MINIO_ROOT_USER", credentials.minio_access_key),
            ("MINIO_ROOT_PASSWORD", credentials.minio_secret_key),
        ]),
        "volumeMounts": [{"name": "data", "mountPath": "/data"}],
        "readinessProbe": {
            "httpGet": {"path": "/minio/health/ready", "port": MINIO_PORT},
            "initialDelaySeconds": 5,
            "periodSeconds": 10,
        },
        "livenessProbe": {
            "httpGet": {"path": "/minio/health/live", "port": MINIO_PORT},
            "initialDelaySeconds": 30,
            "periodSeconds": 10,
        },
    }


def _backend_container(
    tenant_id: str,
    config: ManifestConfig,
    credentials: TenantCredentials,
) -> Dict[str, Any]:
    url = access_url(tenant_id, config.domain, config.use_tls)
    database_url = (
        f"postgresql://{POSTGRES_USER}:{credentials.postgres_password}"
        f"@{POSTGRES}:{POSTGRES_PORT}/{POSTGRES_DATABASE}"
    )
    return {
        "name": BACKEND,
        "image": config.backend_image,
        "imagePullPolicy": config.app_image_pull_policy,
        "ports": [{"containerPort": BACKEND_PORT, "name": BACKEND}],
        "env": _env([
            ("BACKEND_PORT", str(BACKEND_PORT)),
            ("JWT_SECRET", config.jwt_secret),
            ("COOKIE_DOMAIN", config.domain),
            ("FRONTEND_URL", url),
            ("SALT", str(config.salt_rounds)),
            ("STORAGE_ENDPOINT", MINIO),
            ("STORAGE_PORT", str(MINIO_PORT)),
            ("STORAGE_PUBLIC_URL", f"{url}/cdn"),
            ("STORAGE_ACCESS_KEY", credentials.minio_access_key),
            ("STORAGE_SECRET_KEY", credentials.minio_secret_key),
            ("STORAGE_DEFAULT_BUCKET", config.storage_bucket),
            ("STORAGE_USE_SSL", "false"),
            ("UPLOAD_MAX_FILE_SIZE", str(config.upload_max_file_size)),
            ("DATABASE_URL", database_url),
        ]),
        **_http_probes("/health", BACKEND_PORT),
    }


def _frontend_container(config: ManifestConfig) -> Dict[str, Any]:
    return {
        "name": FRONTEND,
        "image": config.frontend_image,
        "imagePullPolicy": config.app_image_pull_policy,
        "ports": [{"containerPort": FRONTEND_PORT, "name": FRONTEND}],
        "env": _env([
            ("BACKEND_HOST", f"{BACKEND}:{BACKEND_PORT}"),
            ("CDN_HOST", f"{MINIO}:{MINIO_PORT}"),
        ]),
        **_http_probes("/", FRONTEND_PORT),
    }


def build_tenant_manifests(
    tenant_id: str,
    config: ManifestConfig,
    credentials: TenantCredentials,
) -> TenantManifests:
    """
    Build the full desired state of a tenant stack.

    Raises:
        TenantValidationError: if the tenant id or domain is unusable
    """
    validate_tenant_id(tenant_id)
    if not config.domain:
        raise TenantValidationError("Cluster domain must not be empty")

    return TenantManifests(
        tenant_id=tenant_id,
        namespace=build_namespace(tenant_id),
        stateful_sets=(
            build_stateful_set(tenant_id, POSTGRES, _postgres_container(config, credentials)),
            build_stateful_set(tenant_id, MINIO, _minio_container(config, credentials)),
        ),
        deployments=(
            build_deployment(tenant_id, BACKEND, _backend_container(tenant_id, config, credentials)),
            build_deployment(tenant_id, FRONTEND, _frontend_container(config)),
        ),
        services=(
            build_service(tenant_id, POSTGRES, POSTGRES_PORT),
            build_service(tenant_id, MINIO, MINIO_PORT),
            build_service(tenant_id, BACKEND, BACKEND_PORT),
            build_service(tenant_id, FRONTEND, FRONTEND_PORT),
        ),
        ingresses=(
            build_ingress(tenant_id, config.domain, FRONTEND, FRONTEND_PORT,
                          ingress_class_name=config.ingress_class_name),
            build_ingress(tenant_id, config.domain, MINIO, MINIO_PORT, prefix="cdn",
                          ingress_class_name=config.ingress_class_name),
        ),
    )
