"""Monitoring session schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class LocationIn(BaseModel):
    general: str = Field(..., min_length=1, max_length=500)
    precise: str = Field(..., min_length=1, max_length=1000)


class SessionStart(BaseModel):
    location: LocationIn


class CheckInUpdate(BaseModel):
    count: int = Field(..., ge=0)


class SessionEnd(BaseModel):
    status: str = Field(default="completed", pattern="^(completed|emergency)$")


class SessionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None
    anonymous_id: str | None
    status: str
    location_general: str | None
    location_precise: str | None
    check_ins_count: int
    started_at: datetime
    ended_at: datetime | None

    model_config = {"from_attributes": True}


class AlertHandoffResponse(BaseModel):
    """Alert raised by a monitoring session, for the emergency flow to pick up."""

    alert_id: uuid.UUID
    session_id: uuid.UUID | None
    created_at: datetime
    general_location: str
    precise_location: str
    source: str
