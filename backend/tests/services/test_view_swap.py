"""Tests for the atomic temp -> canonical rename."""

import re

import pytest

from mviews.services.view_builder import ViewBuildError
from mviews.services.view_swap import SwapCoordinator
from tests.helpers import executed_sql, make_connection


@pytest.fixture
def swapper():
    return SwapCoordinator()


class TestPromote:
    async def test_first_build_renames_temp_only(self, swapper):
        conn = make_connection(fetchval=0)

        retired = await swapper.promote(conn, "t1_m_sessions_Ab12Cd34", "t1_m_sessions")

        assert retired is None
        assert executed_sql(conn) == [
            "ALTER MATERIALIZED VIEW t1_m_sessions_Ab12Cd34 RENAME TO t1_m_sessions"
        ]
        conn.transaction.assert_called_once()

    async def test_rebuild_retires_previous_view(self, swapper):
        conn = make_connection(fetchval=1)

        retired = await swapper.promote(conn, "t1_m_sessions_Ab12Cd34", "t1_m_sessions")

        assert re.fullmatch(r"t1_m_sessions_[A-Za-z0-9]{8}", retired)
        assert executed_sql(conn) == [
            f"ALTER MATERIALIZED VIEW t1_m_sessions RENAME TO {retired}",
            "ALTER MATERIALIZED VIEW t1_m_sessions_Ab12Cd34 RENAME TO t1_m_sessions",
        ]

    async def test_existence_check_uses_lowercased_name(self, swapper):
        conn = make_connection(fetchval=0)

        await swapper.promote(conn, "Acme_m_sessions_Ab12Cd34", "Acme_m_sessions")

        assert conn.fetchval.await_args.args[1] == "acme_m_sessions"

    async def test_failed_rename_rolls_back_and_raises_swap(self, swapper):
        conn = make_connection(fetchval=1)
        conn.execute.side_effect = [None, RuntimeError("relation already exists")]
        tx = conn.transaction.return_value

        with pytest.raises(ViewBuildError) as exc_info:
            await swapper.promote(conn, "t1_m_sessions_Ab12Cd34", "t1_m_sessions")

        assert exc_info.value.stage == "swap"
        # The transaction context saw the exception, so asyncpg rolls back
        exc_type = tx.__aexit__.await_args.args[0]
        assert exc_type is RuntimeError


class TestCleanup:
    async def test_drop_retired(self, swapper, conn):
        assert await swapper.drop_retired(conn, "t1_m_sessions_Zz99Yy88") is True
        assert executed_sql(conn) == ["DROP MATERIALIZED VIEW IF EXISTS t1_m_sessions_Zz99Yy88"]

    async def test_drop_retired_failure_is_not_raised(self, swapper, conn):
        conn.execute.side_effect = RuntimeError("lock timeout")
        assert await swapper.drop_retired(conn, "t1_m_sessions_Zz99Yy88") is False

    async def test_discard_temp(self, swapper, conn):
        assert await swapper.discard(conn, "t1_m_sessions_Ab12Cd34") is True
        assert executed_sql(conn) == ["DROP MATERIALIZED VIEW IF EXISTS t1_m_sessions_Ab12Cd34"]

    async def test_discard_rejects_unsafe_name(self, swapper, conn):
        assert await swapper.discard(conn, "x; DROP TABLE sessions") is False
        conn.execute.assert_not_awaited()
