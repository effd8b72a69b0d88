"""Swap Coordinator: atomically promote a temp view to its canonical name.

Readers of the canonical name see either the previous view or the new one,
never an absent view: both renames commit together or not at all. The
retired view is dropped afterwards, outside the transaction.
"""

import asyncpg  # type: ignore[import-untyped]
import structlog

from mviews.core.sql import validate_identifier
from mviews.services.view_builder import ViewBuildError
from mviews.services.view_names import normalize_view_name, temp_name

logger = structlog.stdlib.get_logger(__name__)

VIEW_EXISTS_QUERY = """
    SELECT COUNT(*) FROM pg_matviews
    WHERE schemaname = current_schema() AND matviewname = $1
"""


class SwapCoordinator:
    async def view_exists(self, conn: asyncpg.Connection, view_name: str) -> bool:
        # Unquoted identifiers are stored lower-cased in the catalog
        count = await conn.fetchval(VIEW_EXISTS_QUERY, normalize_view_name(view_name))
        return bool(count)

    async def promote(
        self, conn: asyncpg.Connection, temp: str, canonical: str
    ) -> str | None:
        """Rename ``temp`` to ``canonical`` in one transaction.

        Returns the name the previous canonical view was retired under, or None
        on a first build. Raises ViewBuildError("swap") after a rollback.
        """
        validate_identifier(temp, "view name")
        validate_identifier(canonical, "view name")
        retired: str | None = None
        try:
            async with conn.transaction():
                if await self.view_exists(conn, canonical):
                    retired = temp_name(canonical)
                    await conn.execute(
                        f"ALTER MATERIALIZED VIEW {canonical} RENAME TO {retired}"
                    )
                await conn.execute(f"ALTER MATERIALIZED VIEW {temp} RENAME TO {canonical}")
        except Exception as exc:
            logger.error(
                "view_swap_failed",
                temp_view=temp,
                canonical_view=canonical,
                error=str(exc),
            )
            raise ViewBuildError("swap", str(exc)) from exc

        logger.info(
            "view_swapped",
            temp_view=temp,
            canonical_view=canonical,
            retired_view=retired,
        )
        return retired

    async def _drop(self, conn: asyncpg.Connection, view_name: str, event: str) -> bool:
        try:
            validate_identifier(view_name, "view name")
            await conn.execute(f"DROP MATERIALIZED VIEW IF EXISTS {view_name}")
        except Exception as exc:
            logger.warning(event, view_name=view_name, error=str(exc))
            return False
        return True

    async def drop_retired(self, conn: asyncpg.Connection, retired: str) -> bool:
        """Best-effort drop of a retired view; a leftover is harmless."""
        dropped = await self._drop(conn, retired, "retired_view_drop_failed")
        if dropped:
            logger.info("retired_view_dropped", view_name=retired)
        return dropped

    async def discard(self, conn: asyncpg.Connection, temp: str) -> bool:
        """Best-effort cleanup of a temp view left behind by a failed build."""
        return await self._drop(conn, temp, "temp_view_discard_failed")
