"""Tenant registry: every tenant that owns at least one user profile."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mviews.models.user_extension import UserExtension


class TenantRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_distinct_tenants(self) -> list[str]:
        """Distinct tenant codes, sorted, without blank or 'undefined' codes."""
        stmt = (
            select(UserExtension.tenant_code)
            .where(
                UserExtension.tenant_code.is_not(None),
                UserExtension.tenant_code.not_in(["", "undefined"]),
            )
            .distinct()
            .order_by(UserExtension.tenant_code)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
