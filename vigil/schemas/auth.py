"""Auth schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    is_responder: bool = False


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ProfileMe(BaseModel):
    id: uuid.UUID
    email: str
    is_responder: bool
    is_admin: bool
    is_active: bool
    last_seen_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RoleUpdate(BaseModel):
    is_responder: bool | None = None
    is_admin: bool | None = None
