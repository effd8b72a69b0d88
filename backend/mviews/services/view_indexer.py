"""Index Synthesizer: indexes for a freshly built view.

Runs against the temp view before the swap, so the canonical name never
addresses a view without its unique index (REFRESH ... CONCURRENTLY
requires one). Only the unique index is essential; every other failure is
reported and the remaining indexes are still attempted.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

import asyncpg  # type: ignore[import-untyped]
import structlog

from mviews.core.metrics import view_index_failures_total
from mviews.core.sql import index_name, validate_identifier
from mviews.services.model_registry import ModelSpec
from mviews.services.view_builder import ViewBuildError
from mviews.services.view_schema_compiler import ViewSchema, is_array_type, is_text_type

logger = structlog.stdlib.get_logger(__name__)

# Neither has a default GIN or btree operator class worth using
UNINDEXED_SQL_TYPES = frozenset({"json", "json[]"})


@dataclass(frozen=True)
class IndexPlan:
    name: str
    kind: str  # "unique" | "trigram" | "gin" | "btree" | "search" | "composite"
    statement: str


@dataclass(frozen=True)
class IndexIssue:
    index_name: str
    kind: str
    error: str


@dataclass
class IndexReport:
    created: list[str] = field(default_factory=list)
    issues: list[IndexIssue] = field(default_factory=list)


def _create(view: str, name: str, body: str, unique: bool = False) -> str:
    keyword = "UNIQUE INDEX" if unique else "INDEX"
    return f"CREATE {keyword} IF NOT EXISTS {name} ON {view} {body}"


def field_index(view: str, column: str, sql_type: str) -> IndexPlan | None:
    """The index for one filterable field, chosen by its SQL type."""
    if sql_type in UNINDEXED_SQL_TYPES:
        return None
    name = index_name(view, "idx", column)
    if is_text_type(sql_type):
        return IndexPlan(name, "trigram", _create(view, name, f"USING gin ({column} gin_trgm_ops)"))
    if is_array_type(sql_type) or sql_type == "jsonb":
        return IndexPlan(name, "gin", _create(view, name, f"USING gin ({column})"))
    return IndexPlan(name, "btree", _create(view, name, f"({column})"))


def plan_indexes(
    view: str,
    schema: ViewSchema,
    spec: ModelSpec,
    filterable_fields: Iterable[str],
) -> tuple[IndexPlan, list[IndexPlan], list[IndexIssue]]:
    """Return the unique primary-key index and the optional indexes.

    Optional indexes whose columns are missing from the view are reported
    as issues instead of being planned.
    """
    validate_identifier(view, "view name")
    missing_pk = [c for c in spec.primary_key if schema.sql_type_of(c) is None]
    if missing_pk:
        raise ViewBuildError(
            "index", f"Primary key column(s) {missing_pk} not projected in {view}"
        )
    unique_name = index_name(view, "unique", *spec.primary_key)
    unique = IndexPlan(
        unique_name,
        "unique",
        _create(view, unique_name, f"({', '.join(spec.primary_key)})", unique=True),
    )

    plans: list[IndexPlan] = []
    issues: list[IndexIssue] = []
    trigram_columns: set[str] = set()

    for column in dict.fromkeys(filterable_fields):
        sql_type = schema.sql_type_of(column)
        if sql_type is None:
            # Skipped at compile time, already reported there
            continue
        plan = field_index(view, column, sql_type)
        if plan is None:
            continue
        if plan.kind == "trigram":
            trigram_columns.add(column)
        plans.append(plan)

    for column in spec.search_fields:
        if column in trigram_columns:
            continue
        name = index_name(view, "search", column)
        if schema.sql_type_of(column) is None:
            issues.append(IndexIssue(name, "search", f"Column {column} not in view"))
            continue
        plans.append(
            IndexPlan(name, "search", _create(view, name, f"USING gin ({column} gin_trgm_ops)"))
        )

    for extra in spec.extra_indexes:
        name = index_name(view, extra.suffix)
        absent = [c for c in extra.columns if schema.sql_type_of(c) is None]
        if absent:
            issues.append(IndexIssue(name, "composite", f"Columns {absent} not in view"))
            continue
        plans.append(
            IndexPlan(name, "composite", _create(view, name, f"({', '.join(extra.columns)})"))
        )

    return unique, plans, issues


class IndexSynthesizer:
    async def create_indexes(
        self,
        conn: asyncpg.Connection,
        view: str,
        schema: ViewSchema,
        spec: ModelSpec,
        filterable_fields: Iterable[str],
    ) -> IndexReport:
        """Create every index for ``view``.

        Raises ViewBuildError("index") only when the unique index fails.
        """
        unique, plans, issues = plan_indexes(view, schema, spec, filterable_fields)
        report = IndexReport(issues=list(issues))

        try:
            await conn.execute(unique.statement)
        except Exception as exc:
            view_index_failures_total.labels(kind=unique.kind).inc()
            logger.error("unique_index_failed", view_name=view, index=unique.name, error=str(exc))
            raise ViewBuildError("index", str(exc)) from exc
        report.created.append(unique.name)

        for plan in plans:
            try:
                await conn.execute(plan.statement)
            except Exception as exc:
                report.issues.append(IndexIssue(plan.name, plan.kind, str(exc)))
                continue
            report.created.append(plan.name)

        for issue in report.issues:
            view_index_failures_total.labels(kind=issue.kind).inc()
            logger.warning(
                "index_creation_failed",
                view_name=view,
                index=issue.index_name,
                kind=issue.kind,
                error=issue.error,
            )

        logger.info(
            "view_indexes_created",
            view_name=view,
            created=len(report.created),
            failed=len(report.issues),
        )
        return report
