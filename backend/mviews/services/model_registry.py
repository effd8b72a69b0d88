"""Model Registry: logical model name -> backing table, native columns, search config.

Column types are read from the ORM table definitions and reduced to native
type keys (``STRING``, ``ARRAY[STRING]``, ...) so the schema compiler works on
plain data and never touches SQLAlchemy types.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import (
    ARRAY,
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeEngine

from mviews.models import Session, UserExtension

SOFT_DELETE_PREDICATE = "deleted_at IS NULL"


@dataclass(frozen=True)
class IndexSpec:
    """A fixed composite index created on every tenant view of a model."""

    suffix: str
    columns: tuple[str, ...]


@dataclass
class ModelSpec:
    name: str
    table_name: str
    # column name -> native type key; None when the type has no key
    columns: dict[str, str | None]
    primary_key: tuple[str, ...]
    payload_column: str = "meta"
    search_fields: tuple[str, ...] = ()
    extra_indexes: tuple[IndexSpec, ...] = ()
    base_predicate: str = SOFT_DELETE_PREDICATE


def native_type_key(column_type: TypeEngine) -> str | None:
    """Reduce a SQLAlchemy column type to a native type key.

    Subclasses are checked before their parents (JSONB before JSON, BigInteger
    before Integer, Text before String).
    """
    if isinstance(column_type, ARRAY):
        item_key = native_type_key(column_type.item_type)
        return f"ARRAY[{item_key}]" if item_key else None
    if isinstance(column_type, JSONB):
        return "JSONB"
    if isinstance(column_type, JSON):
        return "JSON"
    if isinstance(column_type, BigInteger):
        return "BIGINT"
    if isinstance(column_type, Integer):
        return "INTEGER"
    if isinstance(column_type, Boolean):
        return "BOOLEAN"
    if isinstance(column_type, DateTime):
        return "DATE"
    if isinstance(column_type, Text):
        return "TEXT"
    if isinstance(column_type, String):
        return "STRING"
    return None


def model_spec_from_orm(model, **options) -> ModelSpec:
    """Build a ModelSpec from a declarative model class."""
    table = model.__table__
    return ModelSpec(
        name=model.__name__,
        table_name=table.name,
        columns={column.name: native_type_key(column.type) for column in table.columns},
        primary_key=tuple(column.name for column in table.primary_key.columns),
        **options,
    )


class ModelRegistry:
    """Lookup of the models the view engine can project."""

    def __init__(self, specs: Iterable[ModelSpec]):
        self._specs: dict[str, ModelSpec] = {spec.name: spec for spec in specs}

    def get(self, model_name: str) -> ModelSpec | None:
        return self._specs.get(model_name)

    def names(self) -> list[str]:
        return list(self._specs)

    def __contains__(self, model_name: object) -> bool:
        return model_name in self._specs


def default_model_registry() -> ModelRegistry:
    return ModelRegistry(
        [
            model_spec_from_orm(
                Session,
                search_fields=("title",),
                extra_indexes=(
                    IndexSpec(
                        "filtered",
                        ("mentor_organization_id", "status", "type", "mentor_id"),
                    ),
                ),
                # Sessions drop out of the view once their start time has passed
                base_predicate=(
                    f"{SOFT_DELETE_PREDICATE} "
                    "AND start_date >= EXTRACT(EPOCH FROM now())"
                ),
            ),
            model_spec_from_orm(
                UserExtension,
                search_fields=("name",),
                extra_indexes=(IndexSpec("org_name", ("organization_id", "name")),),
            ),
        ]
    )


model_registry = default_model_registry()
