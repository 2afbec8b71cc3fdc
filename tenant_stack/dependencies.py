"""FastAPI dependency helpers."""

from typing import Optional

from fastapi import Header, HTTPException, Request

from tenant_stack.services.tenant_manager import TenantManager


def get_tenant_manager(request: Request) -> TenantManager:
    """Get the TenantManager wired up in the application lifespan.

    Raises:
        RuntimeError: If the lifespan has not run
    """
    manager = getattr(request.app.state, "tenant_manager", None)
    if manager is None:
        raise RuntimeError("TenantManager not initialized. Check lifespan events in main.py")
    return manager


def get_current_owner(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """
    Identity of the caller, as asserted by the upstream authentication gateway.

    Every tenant operation is scoped to this identity.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()
