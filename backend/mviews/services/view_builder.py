"""View Builder: emits CREATE MATERIALIZED VIEW for a (tenant, model) pair.

The view is created under a temporary name and fully populated before
anything addresses it; promotion to the canonical name is the swap
coordinator's job.
"""

from dataclasses import dataclass

import asyncpg  # type: ignore[import-untyped]
import structlog

from mviews.core.sql import (
    InvalidIdentifierError,
    quote_literal,
    validate_identifier,
    validate_tenant_code,
)
from mviews.services.entity_metadata import ModelFieldGroup
from mviews.services.model_registry import ModelRegistry, ModelSpec
from mviews.services.view_names import MaterializedViewHandle, canonical_name, temp_name
from mviews.services.view_schema_compiler import (
    ARRAY_TRANSFORM_FUNCTION,
    CompileResult,
    ViewSchema,
    compile_view_schema,
)

logger = structlog.stdlib.get_logger(__name__)

TENANT_COLUMN = "tenant_code"
SOURCE_SCHEMA = "public"

PREREQUISITE_STATEMENTS = (
    "CREATE EXTENSION IF NOT EXISTS pg_trgm",
    f"""
    CREATE OR REPLACE FUNCTION {ARRAY_TRANSFORM_FUNCTION}(input_jsonb jsonb)
    RETURNS text[] AS $$
    BEGIN
        IF input_jsonb IS NULL OR jsonb_typeof(input_jsonb) <> 'array' THEN
            RETURN NULL;
        END IF;
        RETURN ARRAY(SELECT jsonb_array_elements_text(input_jsonb));
    END;
    $$ LANGUAGE plpgsql IMMUTABLE
    """,
)


class ViewBuildError(Exception):
    """A fatal failure building one (tenant, model) view.

    ``stage`` is one of "compile", "create", "index", "swap".
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(message)


@dataclass
class BuiltView:
    """A populated temporary view, not yet exposed under its canonical name."""

    handle: MaterializedViewHandle
    temp_view: str
    spec: ModelSpec
    compiled: CompileResult
    filterable_fields: list[str]

    @property
    def schema(self) -> ViewSchema:
        return self.compiled.schema


def render_projection(schema: ViewSchema) -> str:
    """Concrete fields first, derived fields appended.

    With no derived fields there is no trailing separator.
    """
    parts = [f.render() for f in schema.concrete_fields]
    parts.extend(f.render() for f in schema.derived_fields)
    return ",\n    ".join(parts)


def render_predicate(base_predicate: str, tenant_code: str) -> str:
    """Conjoin the model's base predicate with the mandatory tenant filter."""
    tenant_literal = quote_literal(validate_tenant_code(tenant_code))
    return f"{base_predicate} AND {TENANT_COLUMN} = {tenant_literal}"


def render_create_statement(
    view_name: str, schema: ViewSchema, base_predicate: str, tenant_code: str
) -> str:
    validate_identifier(view_name, "view name")
    table = validate_identifier(schema.table_name, "table name")
    return (
        f"CREATE MATERIALIZED VIEW {view_name} AS\n"
        f"SELECT\n    {render_projection(schema)}\n"
        f"FROM {SOURCE_SCHEMA}.{table}\n"
        f"WHERE {render_predicate(base_predicate, tenant_code)}"
    )


class ViewBuilder:
    def __init__(self, registry: ModelRegistry):
        self._registry = registry

    async def ensure_prerequisites(self, conn: asyncpg.Connection) -> None:
        """Install the trigram extension and the JSON array transform function."""
        for statement in PREREQUISITE_STATEMENTS:
            await conn.execute(statement)
        logger.info("view_prerequisites_ready")

    def compile(self, group: ModelFieldGroup, tenant_code: str) -> BuiltView:
        """Compile the schema and allocate names. Raises ViewBuildError("compile")."""
        spec = self._registry.get(group.model_name)
        if spec is None:
            raise ViewBuildError("compile", f"Unknown model: {group.model_name}")
        try:
            validate_tenant_code(tenant_code)
            canonical = canonical_name(tenant_code, spec.table_name)
            temp = temp_name(canonical)
        except InvalidIdentifierError as exc:
            raise ViewBuildError("compile", str(exc)) from exc

        compiled = compile_view_schema(spec, group.descriptors)
        if not compiled.schema.column_names:
            raise ViewBuildError("compile", f"No projectable columns for {spec.name}")

        return BuiltView(
            handle=MaterializedViewHandle(
                tenant_code=tenant_code,
                table_name=spec.table_name,
                canonical_name=canonical,
                in_flight_temp_name=temp,
            ),
            temp_view=temp,
            spec=spec,
            compiled=compiled,
            filterable_fields=group.field_names,
        )

    async def build(
        self, conn: asyncpg.Connection, group: ModelFieldGroup, tenant_code: str
    ) -> BuiltView:
        """Create and populate the temporary view for one model of a tenant."""
        built = self.compile(group, tenant_code)
        temp = built.temp_view

        statement = render_create_statement(
            temp, built.schema, built.spec.base_predicate, tenant_code
        )
        try:
            await conn.execute(statement)
        except Exception as exc:
            raise ViewBuildError("create", str(exc)) from exc

        logger.info(
            "temp_view_created",
            tenant_code=tenant_code,
            model=built.spec.name,
            view_name=temp,
            concrete_fields=len(built.schema.concrete_fields),
            derived_fields=len(built.schema.derived_fields),
        )
        return built
