"""Response model - one responder's commitment to one alert."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from vigil.db.base import Base


class Response(Base):
    """Responder commitment. At most one row per (alert, responder)."""

    __tablename__ = "responses"
    __table_args__ = (
        UniqueConstraint("alert_id", "responder_id", name="uq_responses_alert_responder"),
        Index("ix_responses_status_alert", "status", "alert_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    alert_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    responder_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("responder_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="committed")  # committed | en_route | arrived | completed
    ambulance_called: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    person_okay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    naloxone_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    additional_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
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
