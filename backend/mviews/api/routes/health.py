"""Health check endpoints. No authentication required.

- /health      : service name and status, no dependency checks
- /health/live : liveness probe (always 200)
- /health/ready: readiness probe (checks PostgreSQL)
"""

import asyncio
import time

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mviews.core.database import get_db
from mviews.core.metrics import store_health_check_duration_seconds, store_health_status
from mviews.core.postgres import PostgresClient

router = APIRouter()
logger = structlog.stdlib.get_logger("mviews.health")

# Per-store timeout for health checks (seconds)
_HEALTH_CHECK_TIMEOUT = 3.0


@router.get("/health")
async def health_check():
    """Service identity; answers without touching PostgreSQL."""
    return {"status": "healthy", "service": "mviews"}


@router.get("/health/live")
async def liveness():
    """Liveness probe: process is alive."""
    return {"status": "live"}


async def _check_postgresql(db: AsyncSession) -> dict:
    """Check the metadata catalog connection (SQLAlchemy engine)."""
    start = time.monotonic()
    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=_HEALTH_CHECK_TIMEOUT)
        elapsed = time.monotonic() - start
        store_health_check_duration_seconds.labels(store="postgresql").observe(elapsed)
        store_health_status.labels(store="postgresql").set(1)
        return {"status": "ok", "_healthy": True}
    except Exception as exc:
        elapsed = time.monotonic() - start
        store_health_check_duration_seconds.labels(store="postgresql").observe(elapsed)
        store_health_status.labels(store="postgresql").set(0)
        logger.warning("readiness_check_failed", dependency="postgresql", error=str(exc))
        return {"status": "error", "detail": str(exc), "_healthy": False}


async def _check_view_pool(client: PostgresClient) -> dict:
    """Check the asyncpg pool used for view DDL and refreshes."""
    start = time.monotonic()
    try:
        ok = await asyncio.wait_for(client.ping(), timeout=_HEALTH_CHECK_TIMEOUT)
    except Exception as exc:
        ok = False
        logger.warning("readiness_check_failed", dependency="view_pool", error=str(exc))
    elapsed = time.monotonic() - start
    store_health_check_duration_seconds.labels(store="view_pool").observe(elapsed)
    store_health_status.labels(store="view_pool").set(1 if ok else 0)
    return {"status": "ok" if ok else "error", "_healthy": ok}


@router.get("/health/ready")
async def readiness(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Readiness probe: checks both PostgreSQL connections concurrently."""
    client: PostgresClient = request.app.state.postgres_client
    results = await asyncio.gather(_check_postgresql(db), _check_view_pool(client))

    names = ["postgresql", "view_pool"]
    checks: dict[str, dict] = {}
    healthy = True

    for name, result in zip(names, results):
        if not result.pop("_healthy", True):
            healthy = False
        checks[name] = result

    status_code = 200 if healthy else 503
    return JSONResponse(
        content={"status": "ready" if healthy else "not_ready", "checks": checks},
        status_code=status_code,
    )
