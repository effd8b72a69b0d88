"""PostgreSQL async client for view DDL and refreshes (asyncpg).

The ORM engine in core/database.py reads the metadata catalog; this client
issues the raw statements SQLAlchemy has no constructs for: CREATE/ALTER/DROP
MATERIALIZED VIEW, REFRESH ... CONCURRENTLY, advisory locks.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import asyncpg  # type: ignore[import-untyped]
import structlog
from sqlalchemy.engine import make_url

from mviews.core.config import settings

logger = structlog.stdlib.get_logger("mviews.postgres")


def asyncpg_dsn(database_url: str) -> str:
    """Turn a SQLAlchemy URL (postgresql+asyncpg://...) into a plain libpq DSN."""
    url = make_url(database_url).set(drivername="postgresql")
    return url.render_as_string(hide_password=False)


@dataclass
class PostgresClient:
    """Async PostgreSQL client backed by an asyncpg connection pool.

    Statements that must share a session (advisory locks, the rename
    transaction) go through acquire(); one-shot statements use execute/fetch.
    """

    dsn: str
    min_size: int = 2
    max_size: int = 10

    _pool: asyncpg.Pool | None = field(default=None, init=False, repr=False)

    async def create_pool(self) -> None:
        """Create the asyncpg connection pool."""
        self._pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
        )
        logger.info("postgres_pool_created")

    async def close_pool(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("postgres_pool_closed")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Hold one pooled connection for a multi-statement sequence."""
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool not initialized")
        async with self._pool.acquire() as conn:
            yield conn

    async def execute(self, query: str, *args: Any) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[dict]:
        """Execute a query and return rows as dicts."""
        async with self.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def ping(self) -> bool:
        """Health check."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as exc:
            logger.info("postgres_ping_failed", reason=str(exc))
            return False


def get_postgres_client() -> PostgresClient:
    return PostgresClient(
        dsn=asyncpg_dsn(settings.database.database_url),
        min_size=settings.database.database_pool_min_size,
        max_size=settings.database.database_pool_max_size,
    )
