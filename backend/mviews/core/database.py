"""Async SQLAlchemy engine and session factory.

Used for reading the metadata catalog and tenant registry. DDL against the
synthesized views goes through the asyncpg client in core/postgres.py.
"""

from collections.abc import AsyncGenerator
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from mviews.core.config import settings

engine = create_async_engine(
    settings.database.database_url,
    echo=False,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimestampMixin:
    """Mixin providing created_at / updated_at audit columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class SoftDeleteMixin:
    """Mixin providing a deleted_at column. Rows with a value are hidden from views."""

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class TenantMixin:
    """Mixin providing a tenant_code column for multi-tenant isolation."""

    tenant_code: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
