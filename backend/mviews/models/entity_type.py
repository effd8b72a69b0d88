"""Entity type model: the metadata catalog of custom fields.

Rows are owned by the entity-type CRUD API; this service only reads the ones
flagged ``allow_filtering`` to decide which fields a tenant's views project.
"""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from mviews.core.database import Base, SoftDeleteMixin, TenantMixin, TimestampMixin


class EntityType(Base, TenantMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "entity_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    value: Mapped[str] = mapped_column(String(255))
    label: Mapped[str | None] = mapped_column(String(255))
    # Declared type, e.g. "STRING", "INTEGER", "ARRAY[STRING]"
    data_type: Mapped[str] = mapped_column(String(64), default="STRING")
    model_names: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    allow_filtering: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_custom_entities: Mapped[bool] = mapped_column(Boolean, default=False)
    has_entities: Mapped[bool] = mapped_column(Boolean, default=True)
    organization_code: Mapped[str] = mapped_column(String(255), index=True)
