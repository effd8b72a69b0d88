"""Materialized view engine FastAPI application entry point."""

import asyncio
import contextlib
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from mviews.api.routes import admin, health, metrics
from mviews.core.config import settings
from mviews.core.database import async_session
from mviews.core.logging_config import configure_logging
from mviews.core.metrics import app_info
from mviews.core.middleware import ObservabilityMiddleware
from mviews.core.postgres import get_postgres_client
from mviews.services.entity_metadata import EntityMetadataProvider
from mviews.services.model_registry import model_registry
from mviews.services.tenant_registry import TenantRegistry
from mviews.services.view_service import MaterializedViewService

configure_logging()

logger = structlog.stdlib.get_logger("mviews.main")


def build_view_service(postgres_client) -> MaterializedViewService:
    return MaterializedViewService(
        postgres=postgres_client,
        metadata=EntityMetadataProvider(
            async_session,
            default_tenant_code=settings.tenants.default_tenant_code,
            default_organization_code=settings.tenants.default_organization_code,
        ),
        tenants=TenantRegistry(async_session),
        registry=model_registry,
        view_settings=settings.views,
    )


async def reconcile_on_startup(service: MaterializedViewService) -> None:
    """Build missing views, then start the refresh schedulers."""
    try:
        await service.ensure_prerequisites()
        if settings.views.view_audit_on_startup:
            await service.audit_and_reconcile()
        if settings.views.view_refresh_on_startup:
            await service.trigger_refresh()
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("startup_reconcile_failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle events."""
    app_info.info({"version": "0.1.0", "env": settings.app_env})

    postgres_client = get_postgres_client()
    await postgres_client.create_pool()
    app.state.postgres_client = postgres_client

    view_service = build_view_service(postgres_client)
    app.state.view_service = view_service
    startup_task = asyncio.create_task(reconcile_on_startup(view_service))

    yield

    # Shutdown: stop startup work and schedulers, close pool
    startup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await startup_task
    await view_service.shutdown()
    await postgres_client.close_pool()


app = FastAPI(
    title="Materialized View Engine",
    description="Per-tenant materialized view synthesis, indexing and refresh",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Routes: all REST under /api/v1/
app.include_router(health.router, tags=["health"])
app.include_router(admin.router, prefix="/api/v1/admin/views", tags=["admin"])
app.include_router(metrics.router, tags=["metrics"])
