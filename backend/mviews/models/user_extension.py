"""User extension model: mentor and mentee profiles.

Also the tenant registry: every tenant with at least one profile row is a
tenant the view engine serves.
"""

from sqlalchemy import Boolean, String
from sqlalchemy.dialects.postgresql import ARRAY, JSON, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mviews.core.database import Base, SoftDeleteMixin, TimestampMixin


class UserExtension(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "user_extensions"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tenant_code: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    designation: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    area_of_expertise: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    education_qualification: Mapped[str | None] = mapped_column(String(255))
    experience: Mapped[str | None] = mapped_column(String(255))
    gender: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str | None] = mapped_column(String(64), default="ACTIVE")
    is_mentor: Mapped[bool] = mapped_column(Boolean, default=False)
    organization_id: Mapped[str] = mapped_column(String(255))
    organization_code: Mapped[str] = mapped_column(String(255))
    visible_to_organizations: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    mentor_visibility: Mapped[str | None] = mapped_column(String(64), default="CURRENT")
    mentee_visibility: Mapped[str | None] = mapped_column(String(64), default="CURRENT")
    rating: Mapped[dict | None] = mapped_column(JSON)
    settings: Mapped[dict | None] = mapped_column(JSONB)
    meta: Mapped[dict | None] = mapped_column(JSONB)
