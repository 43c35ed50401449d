"""Alert model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from vigil.db.base import Base


class Alert(Base):
    """A live request for help. Never physically deleted."""

    __tablename__ = "alerts"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (anonymous_id IS NULL)",
            name="ck_alerts_single_origin",
        ),
        CheckConstraint("responder_count >= 0", name="ck_alerts_responder_count_non_negative"),
        Index("ix_alerts_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("monitoring_sessions.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("responder_profiles.id", ondelete="CASCADE"), nullable=True, index=True
    )
    anonymous_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active | responded | resolved | cancelled | false_alarm
    general_location: Mapped[str] = mapped_column(Text, nullable=False)
    precise_location: Mapped[str] = mapped_column(Text, nullable=False)
    responder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
