"""Mock builders shared by the service tests."""

from unittest.mock import AsyncMock, MagicMock

from mviews.core.config import ViewSettings
from mviews.services.entity_metadata import FieldDescriptor
from mviews.services.model_registry import model_registry
from mviews.services.view_service import MaterializedViewService


def make_connection(fetchval=None):
    """Mock asyncpg connection. ``transaction()`` works as an async context manager."""
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="OK")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=fetchval)
    conn.transaction = MagicMock(return_value=MagicMock())
    return conn


def executed_sql(conn) -> list[str]:
    """Every statement passed to ``conn.execute``, in order."""
    return [c.args[0] for c in conn.execute.await_args_list]


def field(name: str, declared_type: str = "STRING", models=("Session",), tenant_code="default"):
    return FieldDescriptor(
        name=name,
        model_names=tuple(models),
        declared_type=declared_type,
        tenant_code=tenant_code,
        organization_code="default_code",
    )


def _conn_fetchval(locked=False, exists=0):
    async def fetchval(query, *args):
        if "pg_try_advisory_lock" in query:
            return not locked
        if "pg_matviews" in query:
            return exists
        return True

    return fetchval


def make_view_service(fields, tenants=("t1",), locked=False, exists=0, catalog=()):
    """A real MaterializedViewService over mocked PostgreSQL and metadata.

    ``catalog`` lists the view names pg_matviews reports to the auditor.
    Returns the service, the pool client mock and the build connection mock.
    """
    conn = make_connection()
    conn.fetchval = AsyncMock(side_effect=_conn_fetchval(locked, exists))
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)

    postgres = MagicMock()
    postgres.acquire = MagicMock(return_value=ctx)
    postgres.fetchval = AsyncMock(return_value=0)
    postgres.execute = AsyncMock(return_value="REFRESH MATERIALIZED VIEW")
    postgres.fetch = AsyncMock(return_value=[{"matviewname": name} for name in catalog])

    metadata = MagicMock()
    metadata.list_filterable_fields = AsyncMock(return_value=list(fields))
    tenant_registry = MagicMock()
    tenant_registry.list_distinct_tenants = AsyncMock(return_value=list(tenants))

    svc = MaterializedViewService(
        postgres=postgres,
        metadata=metadata,
        tenants=tenant_registry,
        registry=model_registry,
        view_settings=ViewSettings(refresh_view_interval=30.0),
    )
    return svc, postgres, conn
