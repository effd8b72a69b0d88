"""Session model: scheduled mentoring sessions.

Custom fields live in the ``meta`` JSONB payload. ``start_date`` and
``end_date`` are epoch seconds.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSON, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mviews.core.database import Base, SoftDeleteMixin, TimestampMixin


class Session(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_code: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    recommended_for: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    categories: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    medium: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    mentor_id: Mapped[str | None] = mapped_column(String(255))
    mentor_name: Mapped[str | None] = mapped_column(String(255))
    mentor_organization_id: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(64), default="PUBLISHED")
    type: Mapped[str | None] = mapped_column(String(64))
    visibility: Mapped[str | None] = mapped_column(String(64))
    visible_to_organizations: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    time_zone: Mapped[str | None] = mapped_column(String(64))
    start_date: Mapped[int] = mapped_column(BigInteger)
    end_date: Mapped[int] = mapped_column(BigInteger)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    seats_remaining: Mapped[int | None] = mapped_column(Integer)
    seats_limit: Mapped[int | None] = mapped_column(Integer)
    is_feedback_skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    meeting_info: Mapped[dict | None] = mapped_column(JSONB)
    custom_entity_text: Mapped[dict | None] = mapped_column(JSON)
    meta: Mapped[dict | None] = mapped_column(JSONB)
    created_by: Mapped[str | None] = mapped_column(String(255))
    updated_by: Mapped[str | None] = mapped_column(String(255))
