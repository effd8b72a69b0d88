"""Materialized view orchestration: build, audit, refresh.

Per (tenant, model) the sequence is strictly ordered:

    compile -> create temp -> index temp -> swap -> drop retired -> verify refresh

and runs on one pooled connection holding a session advisory lock keyed by
(tenant, table), so two processes never build the same view at once.
Different models of a tenant build concurrently.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

import structlog

from mviews.core.config import ViewSettings
from mviews.core.logging_config import view_log_context
from mviews.core.metrics import view_build_duration_seconds, view_builds_total
from mviews.core.postgres import PostgresClient
from mviews.core.sql import InvalidIdentifierError, validate_tenant_code
from mviews.services.entity_metadata import (
    EntityMetadataProvider,
    ModelFieldGroup,
    collect_model_names,
    group_by_model,
)
from mviews.services.model_registry import ModelRegistry
from mviews.services.refresh_scheduler import (
    RefreshOutcome,
    RefreshSchedulerRegistry,
    RefreshTarget,
    ViewRefresher,
)
from mviews.services.tenant_registry import TenantRegistry
from mviews.services.view_auditor import CatalogAuditor
from mviews.services.view_builder import BuiltView, ViewBuildError, ViewBuilder
from mviews.services.view_indexer import IndexIssue, IndexSynthesizer
from mviews.services.view_names import canonical_name
from mviews.services.view_schema_compiler import FieldIssue
from mviews.services.view_swap import SwapCoordinator

logger = structlog.stdlib.get_logger(__name__)

TRY_LOCK_QUERY = "SELECT pg_try_advisory_lock(hashtext($1))"
UNLOCK_QUERY = "SELECT pg_advisory_unlock(hashtext($1))"


@dataclass
class ModelBuildResult:
    tenant_code: str
    model_name: str
    status: str  # "built" | "failed" | "locked"
    view_name: str | None = None
    stage: str | None = None
    error: str | None = None
    skipped_fields: list[FieldIssue] = field(default_factory=list)
    index_issues: list[IndexIssue] = field(default_factory=list)
    refresh: RefreshOutcome | None = None
    duration_seconds: float = 0.0


@dataclass
class TenantBuildResult:
    tenant_code: str
    models: list[ModelBuildResult] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and all(m.status == "built" for m in self.models)


@dataclass
class BuildResult:
    tenants: list[TenantBuildResult] = field(default_factory=list)


@dataclass
class RefreshResult:
    mode: str  # "model" | "tenant" | "model_all_tenants" | "all_tenants"
    tenant_code: str | None = None
    model_name: str | None = None
    outcomes: dict[str, RefreshOutcome] = field(default_factory=dict)
    schedulers_started: list[str] = field(default_factory=list)


@dataclass
class AuditResult:
    tenants_built: list[str] = field(default_factory=list)
    fallback: bool = False
    results: list[TenantBuildResult] = field(default_factory=list)


def advisory_lock_key(tenant_code: str, table_name: str) -> str:
    return f"mviews:{tenant_code}:{table_name}"


class MaterializedViewService:
    def __init__(
        self,
        postgres: PostgresClient,
        metadata: EntityMetadataProvider,
        tenants: TenantRegistry,
        registry: ModelRegistry,
        view_settings: ViewSettings,
    ):
        self._postgres = postgres
        self._metadata = metadata
        self._tenants = tenants
        self._registry = registry
        self._view_settings = view_settings
        self.builder = ViewBuilder(registry)
        self.indexer = IndexSynthesizer()
        self.swapper = SwapCoordinator()
        self.refresher = ViewRefresher(postgres)
        self.auditor = CatalogAuditor(postgres, tenants, metadata, registry)
        self.schedulers = RefreshSchedulerRegistry(
            self.refresher, view_settings.refresh_view_interval
        )

    async def ensure_prerequisites(self) -> None:
        async with self._postgres.acquire() as conn:
            await self.builder.ensure_prerequisites(conn)

    # --- Build ---

    async def build_model(self, tenant_code: str, group: ModelFieldGroup) -> ModelBuildResult:
        """Build, index and swap in one (tenant, model) view."""
        with view_log_context(tenant_code, group.model_name):
            return await self._build_model(tenant_code, group)

    async def _build_model(self, tenant_code: str, group: ModelFieldGroup) -> ModelBuildResult:
        result = ModelBuildResult(
            tenant_code=tenant_code, model_name=group.model_name, status="failed"
        )
        spec = self._registry.get(group.model_name)
        if spec is None:
            result.stage = "compile"
            result.error = f"Unknown model: {group.model_name}"
            return result

        lock_key = advisory_lock_key(tenant_code, spec.table_name)
        start = time.monotonic()
        async with self._postgres.acquire() as conn:
            if not await conn.fetchval(TRY_LOCK_QUERY, lock_key):
                logger.info("view_build_locked", tenant_code=tenant_code, model=spec.name)
                result.status = "locked"
                view_builds_total.labels(model=spec.name, status=result.status).inc()
                return result
            try:
                await self._build_locked(conn, tenant_code, group, result)
            finally:
                try:
                    await conn.fetchval(UNLOCK_QUERY, lock_key)
                except Exception as exc:
                    # Session locks also end with the connection
                    logger.warning("advisory_unlock_failed", lock_key=lock_key, error=str(exc))

        result.duration_seconds = time.monotonic() - start
        view_build_duration_seconds.labels(model=spec.name).observe(result.duration_seconds)
        view_builds_total.labels(model=spec.name, status=result.status).inc()
        return result

    async def _build_locked(
        self, conn, tenant_code: str, group: ModelFieldGroup, result: ModelBuildResult
    ) -> None:
        built: BuiltView | None = None
        try:
            built = await self.builder.build(conn, group, tenant_code)
            result.skipped_fields = list(built.compiled.issues)
            temp = built.temp_view

            report = await self.indexer.create_indexes(
                conn, temp, built.schema, built.spec, built.filterable_fields
            )
            result.index_issues = report.issues

            canonical = built.handle.canonical_name
            retired = await self.swapper.promote(conn, temp, canonical)
            built.handle.in_flight_temp_name = None
            if retired is not None:
                await self.swapper.drop_retired(conn, retired)
        except ViewBuildError as exc:
            result.stage = exc.stage
            result.error = str(exc)
        except Exception as exc:
            logger.exception(
                "view_build_unexpected_error", tenant_code=tenant_code, model=group.model_name
            )
            result.error = str(exc)

        if result.error is not None or built is None:
            orphan = built.handle.in_flight_temp_name if built is not None else None
            if orphan and result.stage == "swap":
                # Rolled back: the built view stays for a retry or manual cleanup
                logger.warning("temp_view_retained", tenant_code=tenant_code, view_name=orphan)
            elif orphan:
                await self.swapper.discard(conn, orphan)
            logger.error(
                "view_build_failed",
                tenant_code=tenant_code,
                model=group.model_name,
                stage=result.stage,
                error=result.error,
            )
            return

        result.status = "built"
        result.view_name = built.handle.canonical_name
        result.refresh = await self.refresher.refresh(result.view_name)
        logger.info(
            "view_built",
            tenant_code=tenant_code,
            model=group.model_name,
            view_name=result.view_name,
            skipped_fields=len(result.skipped_fields),
            index_issues=len(result.index_issues),
            refresh=result.refresh.value,
        )

    async def build_tenant(self, tenant_code: str) -> TenantBuildResult:
        """Build every view of one tenant; models build concurrently."""
        tenant_result = TenantBuildResult(tenant_code=tenant_code)
        try:
            validate_tenant_code(tenant_code)
        except InvalidIdentifierError as exc:
            tenant_result.error = str(exc)
            logger.warning("tenant_build_rejected", tenant_code=tenant_code, error=str(exc))
            return tenant_result

        fields = await self._metadata.list_filterable_fields(tenant_code)
        groups = []
        for group in group_by_model(fields):
            if group.model_name in self._registry:
                groups.append(group)
            else:
                logger.debug("build_unknown_model", tenant_code=tenant_code, model=group.model_name)

        outcomes = await asyncio.gather(
            *(self.build_model(tenant_code, g) for g in groups), return_exceptions=True
        )
        for group, outcome in zip(groups, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "view_build_failed",
                    tenant_code=tenant_code,
                    model=group.model_name,
                    error=str(outcome),
                )
                view_builds_total.labels(model=group.model_name, status="failed").inc()
                outcome = ModelBuildResult(
                    tenant_code=tenant_code,
                    model_name=group.model_name,
                    status="failed",
                    error=str(outcome),
                )
            tenant_result.models.append(outcome)
        logger.info(
            "tenant_build_completed",
            tenant_code=tenant_code,
            models=len(tenant_result.models),
            ok=tenant_result.ok,
        )
        return tenant_result

    async def _build_tenants(self, tenant_codes: list[str]) -> list[TenantBuildResult]:
        return [await self.build_tenant(tenant_code) for tenant_code in tenant_codes]

    async def trigger_build(self, tenant_code: str | None = None) -> BuildResult:
        """Build one tenant's views, or every known tenant's."""
        if tenant_code is not None:
            tenant_codes = [tenant_code]
        else:
            tenant_codes = await self._tenants.list_distinct_tenants()
        return BuildResult(tenants=await self._build_tenants(tenant_codes))

    # --- Audit ---

    async def audit_and_reconcile(self) -> AuditResult:
        """Build only tenants missing a view; build all if the audit itself fails."""
        result = AuditResult()
        try:
            await self.ensure_prerequisites()
            result.tenants_built = await self.auditor.find_tenants_needing_build()
        except Exception as exc:
            logger.error("catalog_audit_failed", error=str(exc))
            result.fallback = True
            result.tenants_built = await self._tenants.list_distinct_tenants()

        result.results = await self._build_tenants(result.tenants_built)
        logger.info(
            "audit_reconcile_completed",
            tenants_built=len(result.tenants_built),
            fallback=result.fallback,
        )
        return result

    # --- Refresh ---

    async def refresh_targets(self, tenant_code: str) -> list[RefreshTarget]:
        """The views of ``tenant_code`` to refresh; none if its code cannot name a view."""
        fields = await self._metadata.list_filterable_fields(tenant_code)
        targets = []
        for model_name in collect_model_names(fields):
            spec = self._registry.get(model_name)
            if spec is None:
                continue
            try:
                view_name = canonical_name(tenant_code, spec.table_name)
            except InvalidIdentifierError as exc:
                logger.warning("refresh_tenant_skipped", tenant_code=tenant_code, error=str(exc))
                return []
            targets.append(
                RefreshTarget(
                    tenant_code=tenant_code,
                    model_name=model_name,
                    view_name=view_name,
                    interval=self._view_settings.refresh_interval_for(model_name),
                )
            )
        return targets

    async def _refresh_model(self, tenant_code: str, model_name: str) -> dict[str, RefreshOutcome]:
        scheduler = self.schedulers.get(tenant_code)
        if scheduler is not None:
            for target in scheduler.targets:
                if target.model_name == model_name:
                    return {target.view_name: await scheduler.trigger(model_name)}
        for target in await self.refresh_targets(tenant_code):
            if target.model_name == model_name:
                return {target.view_name: await self.refresher.refresh(target.view_name)}
        logger.info("refresh_target_not_found", tenant_code=tenant_code, model=model_name)
        return {}

    async def start_scheduler(self, tenant_code: str) -> bool:
        targets = await self.refresh_targets(tenant_code)
        return await self.schedulers.start(tenant_code, targets) is not None

    async def trigger_refresh(
        self, tenant_code: str | None = None, model_name: str | None = None
    ) -> RefreshResult:
        """One-shot refresh of a pair or of a model everywhere, or (re)start schedulers."""
        if tenant_code is not None and model_name is not None:
            result = RefreshResult(mode="model", tenant_code=tenant_code, model_name=model_name)
            result.outcomes = await self._refresh_model(tenant_code, model_name)
            return result

        if tenant_code is not None:
            result = RefreshResult(mode="tenant", tenant_code=tenant_code)
            if await self.start_scheduler(tenant_code):
                result.schedulers_started.append(tenant_code)
            return result

        tenant_codes = await self._tenants.list_distinct_tenants()

        if model_name is not None:
            result = RefreshResult(mode="model_all_tenants", model_name=model_name)
            for tenant in tenant_codes:
                result.outcomes.update(await self._refresh_model(tenant, model_name))
            return result

        result = RefreshResult(mode="all_tenants")
        for tenant in tenant_codes:
            if await self.start_scheduler(tenant):
                result.schedulers_started.append(tenant)
        return result

    async def shutdown(self) -> None:
        await self.schedulers.stop_all()
