"""Entity Metadata Provider: filterable field descriptors per tenant.

Filterable entity types are global configuration owned by the default
organization. A tenant sees the default tenant's descriptors plus its own;
when both declare the same field name, the tenant's descriptor wins.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mviews.models.entity_type import EntityType

logger = structlog.stdlib.get_logger(__name__)


@dataclass(frozen=True)
class FieldDescriptor:
    """A metadata-declared field. Read-only to the view engine."""

    name: str
    model_names: tuple[str, ...]
    declared_type: str
    allow_filtering: bool = True
    allow_custom_entities: bool = False
    organization_code: str | None = None
    tenant_code: str | None = None

    @classmethod
    def from_entity_type(cls, row: EntityType) -> "FieldDescriptor":
        return cls(
            name=row.value,
            model_names=tuple(row.model_names or ()),
            declared_type=row.data_type,
            allow_filtering=bool(row.allow_filtering),
            allow_custom_entities=bool(row.allow_custom_entities),
            organization_code=row.organization_code,
            tenant_code=row.tenant_code,
        )


@dataclass
class ModelFieldGroup:
    """The filterable descriptors that apply to one model."""

    model_name: str
    descriptors: list[FieldDescriptor] = field(default_factory=list)

    def add(self, descriptor: FieldDescriptor) -> None:
        if descriptor.name not in self.field_names:
            self.descriptors.append(descriptor)

    @property
    def field_names(self) -> list[str]:
        return [d.name for d in self.descriptors]


def group_by_model(descriptors: Iterable[FieldDescriptor]) -> list[ModelFieldGroup]:
    """Group descriptors by every model they apply to, in first-seen model order."""
    groups: dict[str, ModelFieldGroup] = {}
    for descriptor in descriptors:
        for model_name in descriptor.model_names:
            groups.setdefault(model_name, ModelFieldGroup(model_name)).add(descriptor)
    return list(groups.values())


def collect_model_names(descriptors: Iterable[FieldDescriptor]) -> list[str]:
    return [group.model_name for group in group_by_model(descriptors)]


class EntityMetadataProvider:
    """Reads filterable entity types from the metadata catalog."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_tenant_code: str,
        default_organization_code: str,
    ):
        self._session_factory = session_factory
        self._default_tenant_code = default_tenant_code
        self._default_organization_code = default_organization_code

    async def list_filterable_fields(self, tenant_code: str) -> list[FieldDescriptor]:
        tenant_codes = {tenant_code, self._default_tenant_code}
        stmt = (
            select(EntityType)
            .where(
                EntityType.allow_filtering.is_(True),
                EntityType.deleted_at.is_(None),
                EntityType.organization_code == self._default_organization_code,
                EntityType.tenant_code.in_(sorted(tenant_codes)),
            )
            .order_by(EntityType.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        by_name: dict[str, FieldDescriptor] = {}
        for row in rows:
            descriptor = FieldDescriptor.from_entity_type(row)
            existing = by_name.get(descriptor.name)
            if existing is None or (
                descriptor.tenant_code == tenant_code
                and existing.tenant_code != tenant_code
            ):
                by_name[descriptor.name] = descriptor

        logger.debug(
            "filterable_fields_loaded",
            tenant_code=tenant_code,
            field_count=len(by_name),
        )
        return list(by_name.values())
