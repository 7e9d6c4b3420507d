from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from release_control.db.base import Base
from release_control.models.common import utcnow


class ReleaseEventRecord(Base):
    __tablename__ = "release_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(64), unique=True)
    tag: Mapped[str] = mapped_column(String(128), index=True)
    action: Mapped[str] = mapped_column(String(32), index=True)
    user: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[str] = mapped_column(String(40))
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    details_hash: Mapped[str] = mapped_column(String(128))
    schema_version: Mapped[int] = mapped_column(Integer, default=1)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_release_events_tag_id", "tag", "id"),
    )
