"""Catalog Auditor: which tenants are missing one of their views.

Compares the views PostgreSQL has registered against the canonical names
each tenant should have, given the models its filterable metadata covers.
"""

import structlog

from mviews.core.metrics import audit_tenants_missing_views
from mviews.core.postgres import PostgresClient
from mviews.core.sql import InvalidIdentifierError
from mviews.services.entity_metadata import EntityMetadataProvider, collect_model_names
from mviews.services.model_registry import ModelRegistry
from mviews.services.tenant_registry import TenantRegistry
from mviews.services.view_names import canonical_name, normalize_view_name

logger = structlog.stdlib.get_logger(__name__)

REGISTERED_VIEWS_QUERY = """
    SELECT matviewname FROM pg_matviews WHERE schemaname = current_schema()
"""


class CatalogAuditor:
    def __init__(
        self,
        postgres: PostgresClient,
        tenants: TenantRegistry,
        metadata: EntityMetadataProvider,
        registry: ModelRegistry,
    ):
        self._postgres = postgres
        self._tenants = tenants
        self._metadata = metadata
        self._registry = registry

    async def registered_views(self) -> set[str]:
        rows = await self._postgres.fetch(REGISTERED_VIEWS_QUERY)
        return {normalize_view_name(row["matviewname"]) for row in rows}

    async def expected_views(self, tenant_code: str) -> list[str]:
        """Canonical view names ``tenant_code`` should have.

        Model names without a registered model are ignored.
        """
        fields = await self._metadata.list_filterable_fields(tenant_code)
        names = []
        for model_name in collect_model_names(fields):
            spec = self._registry.get(model_name)
            if spec is None:
                logger.debug("audit_unknown_model", tenant_code=tenant_code, model=model_name)
                continue
            names.append(canonical_name(tenant_code, spec.table_name))
        return names

    async def find_tenants_needing_build(self) -> list[str]:
        registered = await self.registered_views()
        needing_build: list[str] = []

        for tenant_code in await self._tenants.list_distinct_tenants():
            try:
                expected = await self.expected_views(tenant_code)
            except InvalidIdentifierError as exc:
                # No valid view name exists; the build reports the failure
                logger.warning("audit_invalid_tenant", tenant_code=tenant_code, error=str(exc))
                needing_build.append(tenant_code)
                continue
            missing = [name for name in expected if normalize_view_name(name) not in registered]
            if missing:
                logger.info("audit_views_missing", tenant_code=tenant_code, missing=missing)
                needing_build.append(tenant_code)

        audit_tenants_missing_views.set(len(needing_build))
        logger.info(
            "catalog_audit_completed",
            registered=len(registered),
            tenants_needing_build=len(needing_build),
        )
        return needing_build
