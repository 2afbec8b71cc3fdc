"""
tenant_stack API - per-tenant stack provisioning
FastAPI application factory and entry point
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from motor.motor_asyncio import AsyncIOMotorClient

from tenant_stack import __version__
from tenant_stack.config.settings import Settings, get_settings
from tenant_stack.middleware import setup_middleware
from tenant_stack.routers import health, tenants
from tenant_stack.services.kubernetes_client import KubernetesClients
from tenant_stack.services.manifest_builder import ManifestConfig
from tenant_stack.services.resource_orchestrator import ResourceOrchestrator
from tenant_stack.services.status_reconciler import StatusReconciler
from tenant_stack.services.tenant_manager import TenantManager
from tenant_stack.services.tenant_store import MongoTenantStore
from tenant_stack.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the store, cluster clients and tenant manager onto app.state."""
    settings: Settings = app.state.settings

    if getattr(app.state, "tenant_manager", None) is not None:
        # Pre-wired (tests, embedding)
        yield
        return

    logger.info("tenant-stack starting up...")
    logger.info(f"Environment: {settings.ENV_NAME}, cluster domain: {settings.CLUSTER_DOMAIN}")
    logger.info(f"MongoDB: {settings.MONGODB_URI}/{settings.MONGODB_DATABASE}")

    mongo_client = AsyncIOMotorClient(settings.MONGODB_URI)
    store = MongoTenantStore(mongo_client[settings.MONGODB_DATABASE])
    await store.initialize()

    clients = KubernetesClients.from_settings(settings)
    app.state.tenant_manager = TenantManager(
        store=store,
        orchestrator=ResourceOrchestrator(clients),
        reconciler=StatusReconciler(clients),
        manifest_config=ManifestConfig.from_settings(settings),
    )

    try:
        yield
    finally:
        logger.info("tenant-stack shutting down...")
        await app.state.tenant_manager.wait_idle()
        clients.close()
        mongo_client.close()


def create_app(
    settings: Optional[Settings] = None,
    tenant_manager: Optional[TenantManager] = None,
) -> FastAPI:
    """Build the FastAPI app. A pre-built TenantManager skips the lifespan wiring."""
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="tenant-stack API",
        description="Per-tenant application stack provisioning",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.tenant_manager = tenant_manager

    setup_middleware(app, settings.CORS_ORIGINS)

    app.include_router(health.router, tags=["health"])
    app.include_router(tenants.router, prefix="/api/tenants", tags=["tenants"])

    @app.get("/")
    async def root():
        return {
            "name": "tenant-stack API",
            "version": __version__,
            "status": "running",
        }

    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tenant_stack.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
    )


if __name__ == "__main__":
    run()
