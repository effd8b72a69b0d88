"""Schema Compiler: native columns + filterable metadata -> typed view projection.

Every native column with a SQL mapping becomes a concrete field. Filterable
fields that are not native columns are derived: extracted from the model's
semi-structured payload (``meta``) and cast to the declared SQL type.

Compilation is fail-soft: a field that cannot be compiled is reported as a
FieldIssue and left out, the rest of the schema still compiles.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from mviews.core.metrics import view_fields_skipped_total
from mviews.core.sql import InvalidIdentifierError, quote_literal, validate_identifier
from mviews.services.entity_metadata import FieldDescriptor
from mviews.services.model_registry import ModelSpec

logger = structlog.stdlib.get_logger(__name__)

# Native column type key -> SQL type
NATIVE_SQL_TYPES: dict[str, str] = {
    "INTEGER": "integer",
    "BIGINT": "bigint",
    "BOOLEAN": "boolean",
    "DATE": "timestamp with time zone",
    "STRING": "character varying",
    "TEXT": "text",
    "JSON": "json",
    "JSONB": "jsonb",
    "ARRAY[STRING]": "character varying[]",
    "ARRAY[INTEGER]": "integer[]",
    "ARRAY[JSON]": "json[]",
}

# Declared entity-type data_type -> SQL type
DERIVED_SQL_TYPES: dict[str, str] = {
    "INTEGER": "integer",
    "BIGINT": "bigint",
    "BOOLEAN": "boolean",
    "DATE": "timestamp with time zone",
    "STRING": "character varying",
    "TEXT": "text",
    "JSON": "json",
    "JSONB": "jsonb",
    "ARRAY[STRING]": "character varying[]",
    "ARRAY[TEXT]": "text[]",
    "ARRAY[INTEGER]": "integer[]",
}

# Audit timestamps are bookkeeping, never exposed in a view
EXCLUDED_COLUMNS = frozenset({"created_at", "updated_at"})

TEXT_SQL_TYPES = frozenset({"character varying", "text"})

# JSON arrays do not cast to SQL arrays directly; this function (created by
# ViewBuilder.ensure_prerequisites) unpacks them into text[] first.
ARRAY_TRANSFORM_FUNCTION = "transform_jsonb_to_text_array"


def is_array_type(sql_type: str) -> bool:
    return sql_type.endswith("[]")


def is_text_type(sql_type: str) -> bool:
    return sql_type in TEXT_SQL_TYPES


@dataclass(frozen=True)
class ConcreteField:
    column: str
    sql_type: str

    @property
    def name(self) -> str:
        return self.column

    def render(self) -> str:
        return self.column


@dataclass(frozen=True)
class DerivedField:
    key: str
    sql_type: str
    source_expression: str

    @property
    def name(self) -> str:
        return self.key

    def render(self) -> str:
        return f"{self.source_expression} AS {self.key}"


@dataclass(frozen=True)
class FieldIssue:
    """A field left out of the compiled schema, and why."""

    field_name: str
    reason: str  # "invalid_name" | "unsupported_type"
    detail: str = ""


@dataclass
class ViewSchema:
    model_name: str
    table_name: str
    concrete_fields: list[ConcreteField] = field(default_factory=list)
    derived_fields: list[DerivedField] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [f.name for f in (*self.concrete_fields, *self.derived_fields)]

    def sql_type_of(self, name: str) -> str | None:
        for f in (*self.concrete_fields, *self.derived_fields):
            if f.name == name:
                return f.sql_type
        return None


@dataclass
class CompileResult:
    schema: ViewSchema
    issues: list[FieldIssue] = field(default_factory=list)


def derived_expression(payload_column: str, key: str, sql_type: str) -> str:
    """Cast expression extracting ``key`` from the payload as ``sql_type``."""
    if is_array_type(sql_type):
        return (
            f"{ARRAY_TRANSFORM_FUNCTION}({payload_column}->{quote_literal(key)})"
            f"::{sql_type}"
        )
    return f"({payload_column}->>{quote_literal(key)})::{sql_type}"


def _normalize_declared_type(declared_type: str | None) -> str:
    return (declared_type or "").replace(" ", "").upper()


def compile_view_schema(
    spec: ModelSpec, descriptors: Iterable[FieldDescriptor]
) -> CompileResult:
    """Compile the ViewSchema for one model from its filterable descriptors."""
    schema = ViewSchema(model_name=spec.name, table_name=spec.table_name)
    issues: list[FieldIssue] = []

    for column, type_key in spec.columns.items():
        if column in EXCLUDED_COLUMNS:
            continue
        sql_type = NATIVE_SQL_TYPES.get(type_key or "")
        if sql_type is None:
            # Not filterable in the view
            continue
        try:
            validate_identifier(column, "column")
        except InvalidIdentifierError as exc:
            issues.append(FieldIssue(column, "invalid_name", str(exc)))
            continue
        schema.concrete_fields.append(ConcreteField(column=column, sql_type=sql_type))

    payload_column = validate_identifier(spec.payload_column, "payload column")
    seen: set[str] = set()
    for descriptor in descriptors:
        name = descriptor.name
        if name in spec.columns or name in seen:
            continue
        seen.add(name)
        try:
            validate_identifier(name, "field name")
        except InvalidIdentifierError as exc:
            issues.append(FieldIssue(str(name), "invalid_name", str(exc)))
            continue
        sql_type = DERIVED_SQL_TYPES.get(_normalize_declared_type(descriptor.declared_type))
        if sql_type is None:
            issues.append(
                FieldIssue(
                    name,
                    "unsupported_type",
                    f"No SQL mapping for declared type {descriptor.declared_type!r}",
                )
            )
            continue
        schema.derived_fields.append(
            DerivedField(
                key=name,
                sql_type=sql_type,
                source_expression=derived_expression(payload_column, name, sql_type),
            )
        )

    for issue in issues:
        view_fields_skipped_total.labels(model=spec.name, reason=issue.reason).inc()
        logger.warning(
            "view_field_skipped",
            model=spec.name,
            field=issue.field_name,
            reason=issue.reason,
            detail=issue.detail,
        )

    return CompileResult(schema=schema, issues=issues)
