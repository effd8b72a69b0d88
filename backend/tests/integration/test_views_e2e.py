"""End-to-end view builds against a real PostgreSQL.

Requires PostgreSQL at DATABASE_URL (default localhost:5432/mentoring) with
permission to create extensions. Skipped automatically when unavailable;
run with `pytest -m integration`.
"""

import time

import asyncpg
import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from mviews.core.config import settings
from mviews.core.postgres import PostgresClient, asyncpg_dsn
from mviews.models import Session
from mviews.services.entity_metadata import ModelFieldGroup
from mviews.services.model_registry import model_registry
from mviews.services.refresh_scheduler import RefreshOutcome
from mviews.services.view_service import MaterializedViewService
from tests.helpers import field

pytestmark = pytest.mark.integration

TENANT = "itest1"

SESSIONS_DDL = str(
    CreateTable(Session.__table__, if_not_exists=True).compile(dialect=postgresql.dialect())
)


@pytest.fixture
async def postgres():
    client = PostgresClient(dsn=asyncpg_dsn(settings.database.database_url), min_size=1, max_size=4)
    try:
        await client.create_pool()
    except (OSError, asyncpg.PostgresError) as exc:
        pytest.skip(f"PostgreSQL not available: {exc}")
    yield client
    await client.close_pool()


@pytest.fixture
async def seeded(postgres):
    future = int(time.time()) + 86400
    async with postgres.acquire() as conn:
        await conn.execute(f"DROP MATERIALIZED VIEW IF EXISTS {TENANT}_m_sessions")
        await conn.execute(SESSIONS_DDL)
        await conn.execute("DELETE FROM public.sessions WHERE tenant_code = $1", TENANT)
        await conn.execute(
            """
            INSERT INTO public.sessions
                (id, tenant_code, title, status, type, mentor_id,
                 mentor_organization_id, start_date, meta)
            VALUES
                (1, $1, 'Algebra', 'PUBLISHED', 'PUBLIC', 'm1', 'o1', $2,
                 '{"category": "math", "tags": ["a", "b"]}'),
                (2, $1, 'Past', 'PUBLISHED', 'PUBLIC', 'm1', 'o1', 1,
                 '{"category": "history"}'),
                (3, 'other', 'Leak', 'PUBLISHED', 'PUBLIC', 'm1', 'o1', $2, '{}')
            ON CONFLICT DO NOTHING
            """,
            TENANT,
            future,
        )
    yield postgres
    async with postgres.acquire() as conn:
        await conn.execute(f"DROP MATERIALIZED VIEW IF EXISTS {TENANT}_m_sessions")
        await conn.execute("DELETE FROM public.sessions WHERE tenant_code IN ($1, 'other')", TENANT)


def _service(postgres):
    return MaterializedViewService(
        postgres=postgres,
        metadata=None,  # type: ignore[arg-type]
        tenants=None,  # type: ignore[arg-type]
        registry=model_registry,
        view_settings=settings.views,
    )


def _session_group():
    return ModelFieldGroup("Session", [field("category", "STRING"), field("tags", "ARRAY[STRING]")])


class TestViewsE2E:
    async def test_build_projects_derived_fields(self, seeded):
        svc = _service(seeded)
        await svc.ensure_prerequisites()

        result = await svc.build_model(TENANT, _session_group())

        assert result.status == "built", result.error
        rows = await seeded.fetch(
            f"SELECT id, category, tags FROM {TENANT}_m_sessions ORDER BY id"
        )
        # Past sessions and other tenants' rows are filtered out
        assert rows == [{"id": 1, "category": "math", "tags": ["a", "b"]}]

    async def test_rebuild_swaps_and_keeps_unique_index(self, seeded):
        svc = _service(seeded)
        await svc.ensure_prerequisites()
        await svc.build_model(TENANT, _session_group())

        result = await svc.build_model(TENANT, _session_group())

        assert result.status == "built", result.error
        assert result.refresh == RefreshOutcome.REFRESHED
        views = await seeded.fetch(
            "SELECT matviewname FROM pg_matviews WHERE matviewname LIKE $1",
            f"{TENANT}\\_m\\_sessions%",
        )
        assert [v["matviewname"] for v in views] == [f"{TENANT}_m_sessions"]
        unique = await seeded.fetchval(
            "SELECT COUNT(*) FROM pg_indexes"
            " WHERE tablename = $1 AND indexdef LIKE 'CREATE UNIQUE%'",
            f"{TENANT}_m_sessions",
        )
        assert unique == 1
