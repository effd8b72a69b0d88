"""Shared test fixtures.

PostgreSQL is mocked: asyncpg connections are MagicMocks whose execute /
fetch / fetchval are AsyncMocks. Tests never require a running database,
except those under tests/integration (marked ``integration``).
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from mviews.api.deps import get_view_service
from mviews.core.database import get_db
from mviews.main import app
from mviews.services.entity_metadata import ModelFieldGroup
from mviews.services.model_registry import model_registry
from tests.helpers import field, make_connection


@pytest.fixture
def conn():
    return make_connection()


@pytest.fixture
def session_spec():
    return model_registry.get("Session")


@pytest.fixture
def user_extension_spec():
    return model_registry.get("UserExtension")


@pytest.fixture
def session_group():
    """The Session fields of the worked example: one scalar, one array."""
    return ModelFieldGroup(
        "Session",
        [field("category", "STRING"), field("tags", "ARRAY[STRING]")],
    )


@pytest.fixture
def view_service():
    """Mock MaterializedViewService as seen by the admin routes."""
    svc = MagicMock()
    svc.trigger_build = AsyncMock()
    svc.trigger_refresh = AsyncMock()
    svc.audit_and_reconcile = AsyncMock()
    svc.schedulers = MagicMock()
    svc.schedulers.status = MagicMock(return_value=[])
    svc.schedulers.stop = AsyncMock(return_value=True)
    return svc


@pytest.fixture
def postgres_client():
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.fixture
async def client(view_service, postgres_client) -> AsyncClient:
    """httpx AsyncClient wired to the app with the view service mocked.

    ASGITransport does not run the lifespan, so app.state is filled here.
    """
    db = MagicMock()
    db.execute = AsyncMock()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_view_service] = lambda: view_service
    app.state.postgres_client = postgres_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_view_service, None)
