"""Monitoring session model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from vigil.db.base import Base


class MonitoringSession(Base):
    """Fixed-cadence safety check-in session. One active session per origin."""

    __tablename__ = "monitoring_sessions"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (anonymous_id IS NULL)",
            name="ck_monitoring_sessions_single_origin",
        ),
        Index(
            "uq_monitoring_sessions_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active' AND user_id IS NOT NULL"),
            postgresql_where=text("status = 'active' AND user_id IS NOT NULL"),
        ),
        Index(
            "uq_monitoring_sessions_active_anonymous",
            "anonymous_id",
            unique=True,
            sqlite_where=text("status = 'active' AND anonymous_id IS NOT NULL"),
            postgresql_where=text("status = 'active' AND anonymous_id IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("responder_profiles.id", ondelete="CASCADE"), nullable=True
    )
    anonymous_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active | completed | emergency
    location_general: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_precise: Mapped[str | None] = mapped_column(Text, nullable=True)
    check_ins_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
