"""
tenant_stack - per-tenant application stack orchestrator.

Provisions and tears down isolated tenant stacks (postgres, minio, backend,
frontend, ingress) on a shared Kubernetes cluster and reports live health
per component.
"""

__version__ = "0.1.0"
