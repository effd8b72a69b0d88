"""Refresh Scheduler: periodic concurrent refresh of a tenant's views.

One scheduler per tenant walks its targets round-robin. The tick interval is
the total refresh interval divided by the number of targets, so every target
is attempted once per interval. Refreshes are fire-and-forget: a slow
REFRESH never delays the next target. Overlap of refreshes of the same view
is avoided by checking pg_stat_activity first, which is best-effort only.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

from mviews.core.logging_config import view_log_context
from mviews.core.metrics import refresh_schedulers_active, view_refreshes_total
from mviews.core.postgres import PostgresClient
from mviews.core.sql import validate_identifier

logger = structlog.stdlib.get_logger(__name__)

ACTIVE_REFRESH_QUERY = """
    SELECT COUNT(*) FROM pg_stat_activity
    WHERE state = 'active'
      AND pid <> pg_backend_pid()
      AND query LIKE $1
"""


class RefreshOutcome(str, enum.Enum):
    REFRESHED = "refreshed"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    FAILED = "failed"


@dataclass(frozen=True)
class RefreshTarget:
    tenant_code: str
    model_name: str
    view_name: str
    interval: float  # seconds


def refresh_statement(view_name: str) -> str:
    return f"REFRESH MATERIALIZED VIEW CONCURRENTLY {validate_identifier(view_name, 'view name')}"


def active_refresh_pattern(view_name: str) -> str:
    """LIKE pattern matching a running refresh of ``view_name``."""
    escaped = view_name.replace("\\", "\\\\").replace("_", "\\_").replace("%", "\\%")
    return f"REFRESH MATERIALIZED VIEW CONCURRENTLY {escaped}%"


class ViewRefresher:
    """Issues one concurrent refresh, unless one is already running."""

    def __init__(self, postgres: PostgresClient):
        self._postgres = postgres

    async def is_refresh_in_flight(self, view_name: str) -> bool:
        count = await self._postgres.fetchval(
            ACTIVE_REFRESH_QUERY, active_refresh_pattern(view_name)
        )
        return bool(count)

    async def refresh(self, view_name: str) -> RefreshOutcome:
        """Refresh ``view_name``. Never raises; failures are logged and counted."""
        try:
            if await self.is_refresh_in_flight(view_name):
                outcome = RefreshOutcome.SKIPPED_IN_FLIGHT
                logger.info("view_refresh_skipped", view_name=view_name)
            else:
                await self._postgres.execute(refresh_statement(view_name))
                outcome = RefreshOutcome.REFRESHED
                logger.debug("view_refreshed", view_name=view_name)
        except Exception as exc:
            outcome = RefreshOutcome.FAILED
            logger.warning("view_refresh_failed", view_name=view_name, error=str(exc))

        view_refreshes_total.labels(outcome=outcome.value).inc()
        return outcome


class RefreshScheduler:
    """Round-robin refresh loop over one tenant's targets."""

    def __init__(
        self,
        tenant_code: str,
        targets: Sequence[RefreshTarget],
        refresher: ViewRefresher,
        total_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not targets:
            raise ValueError(f"No refresh targets for tenant {tenant_code}")
        if total_interval <= 0:
            raise ValueError("total_interval must be positive")
        self.tenant_code = tenant_code
        self.targets = list(targets)
        self._refresher = refresher
        self._total_interval = total_interval
        self._clock = clock
        self._sleep = sleep
        self._position = 0
        self._last_attempt: dict[str, float] = {}
        self._inflight: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False

    @property
    def tick_interval(self) -> float:
        return self._total_interval / len(self.targets)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def is_due(self, target: RefreshTarget, now: float) -> bool:
        """Whether ``target``'s own interval has elapsed since its last attempt.

        Half a tick of slack keeps sleep jitter from costing a whole rotation.
        """
        last = self._last_attempt.get(target.model_name)
        if last is None:
            return True
        return now - last >= target.interval - self.tick_interval / 2

    def run_once(self) -> RefreshTarget | None:
        """Advance one tick: dispatch the next target's refresh if it is due."""
        target = self.targets[self._position]
        self._position = (self._position + 1) % len(self.targets)

        now = self._clock()
        if not self.is_due(target, now):
            return None
        self._last_attempt[target.model_name] = now

        task = asyncio.create_task(self._refresher.refresh(target.view_name))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return target

    async def trigger(self, model_name: str) -> RefreshOutcome:
        """Refresh one model's view now, outside the rotation, and wait for it."""
        for target in self.targets:
            if target.model_name == model_name:
                self._last_attempt[model_name] = self._clock()
                return await self._refresher.refresh(target.view_name)
        raise KeyError(model_name)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "refresh_scheduler_started",
            tenant_code=self.tenant_code,
            targets=len(self.targets),
            tick_interval=self.tick_interval,
        )

    async def stop(self) -> None:
        """Stop the loop and cancel refreshes still in flight."""
        self._running = False
        pending = [t for t in (self._task, *self._inflight) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._task = None
        logger.info("refresh_scheduler_stopped", tenant_code=self.tenant_code)

    async def _loop(self) -> None:
        # Refresh tasks copy this context, so their events carry tenant_code too
        with view_log_context(self.tenant_code):
            while self._running:
                try:
                    self.run_once()
                except Exception:
                    logger.exception("refresh_tick_failed", tenant_code=self.tenant_code)
                try:
                    await self._sleep(self.tick_interval)
                except asyncio.CancelledError:
                    return


class RefreshSchedulerRegistry:
    """Owns the running scheduler of each tenant."""

    def __init__(self, refresher: ViewRefresher, total_interval: float):
        self._refresher = refresher
        self._total_interval = total_interval
        self._schedulers: dict[str, RefreshScheduler] = {}

    def get(self, tenant_code: str) -> RefreshScheduler | None:
        return self._schedulers.get(tenant_code)

    async def start(
        self, tenant_code: str, targets: Sequence[RefreshTarget]
    ) -> RefreshScheduler | None:
        """Start a scheduler for the tenant, replacing one already running."""
        await self.stop(tenant_code)
        if not targets:
            logger.info("refresh_scheduler_no_targets", tenant_code=tenant_code)
            return None
        scheduler = RefreshScheduler(
            tenant_code, targets, self._refresher, self._total_interval
        )
        self._schedulers[tenant_code] = scheduler
        scheduler.start()
        refresh_schedulers_active.set(len(self._schedulers))
        return scheduler

    async def stop(self, tenant_code: str) -> bool:
        scheduler = self._schedulers.pop(tenant_code, None)
        if scheduler is None:
            return False
        await scheduler.stop()
        refresh_schedulers_active.set(len(self._schedulers))
        return True

    async def stop_all(self) -> None:
        for tenant_code in list(self._schedulers):
            await self.stop(tenant_code)

    def status(self) -> list[dict]:
        return [
            {
                "tenant_code": scheduler.tenant_code,
                "running": scheduler.running,
                "tick_interval": scheduler.tick_interval,
                "inflight": scheduler.inflight,
                "views": [t.view_name for t in scheduler.targets],
            }
            for scheduler in self._schedulers.values()
        ]
