"""Alert and response schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from vigil.core.policies import DEFAULT_CANCELLATION_REASON
from vigil.schemas.session import LocationIn


class AlertCreate(BaseModel):
    session_id: uuid.UUID | None = None
    location: LocationIn


class AlertResponse(BaseModel):
    """Alert as shown on the live board. precise_location is withheld unless committed."""

    id: uuid.UUID
    session_id: uuid.UUID | None
    status: str
    general_location: str
    precise_location: str | None = None
    responder_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CommitResponse(BaseModel):
    response_id: uuid.UUID
    created: bool


class CancelResponseRequest(BaseModel):
    reason: str = Field(default=DEFAULT_CANCELLATION_REASON, max_length=200)
    details: str | None = Field(default=None, max_length=2000)


class CancelResponseResult(BaseModel):
    outcome: str  # cancelled | not_found


class ProgressUpdate(BaseModel):
    status: str = Field(..., pattern="^(committed|en_route|arrived)$")


class OutcomeRequest(BaseModel):
    ambulance_called: bool = False
    person_okay: bool = False
    naloxone_used: bool = False
    additional_notes: str = Field(default="", max_length=4000)


class ResponseOut(BaseModel):
    id: uuid.UUID
    alert_id: uuid.UUID
    responder_id: uuid.UUID
    status: str
    ambulance_called: bool
    person_okay: bool
    naloxone_used: bool
    additional_notes: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StatsResponse(BaseModel):
    active_responders: int
    committed_responders: int
    alert_commitments: dict[str, int]
