"""Auth endpoints."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from vigil.api.errors import http_error
from vigil.core.deps import get_current_profile, require_admin
from vigil.core.errors import VigilError
from vigil.core.security import create_access_token
from vigil.db.session import get_db
from vigil.models.responder_profile import ResponderProfile
from vigil.schemas.auth import LoginRequest, ProfileMe, RegisterRequest, RoleUpdate, TokenResponse
from vigil.services import profiles

router = APIRouter(prefix="/auth", tags=["auth"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/register", response_model=ProfileMe)
def register(
    data: RegisterRequest,
    db: Session = Depends(get_db),
):
    """Register a profile. Admin rights are only granted by another admin."""
    if profiles.get_profile_by_email(db, data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )
    return profiles.create_profile(db, data)


@router.post("/login", response_model=TokenResponse)
def login(
    data: LoginRequest,
    db: Session = Depends(get_db),
):
    """Login and return access token."""
    profile = profiles.authenticate_profile(db, data.email, data.password)
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return TokenResponse(access_token=create_access_token(profile.id))


@router.get("/me", response_model=ProfileMe)
def me(current_profile: ResponderProfile = Depends(get_current_profile)):
    return current_profile


@router.post("/heartbeat", response_model=ProfileMe)
def heartbeat(
    db: Session = Depends(get_db),
    current_profile: ResponderProfile = Depends(get_current_profile),
):
    """Mark the caller as online."""
    return profiles.heartbeat(db, current_profile)


@admin_router.patch("/profiles/{profile_id}/roles", response_model=ProfileMe)
def set_roles(
    profile_id: uuid.UUID,
    data: RoleUpdate,
    db: Session = Depends(get_db),
    admin: ResponderProfile = Depends(require_admin),
):
    try:
        return profiles.set_roles(db, admin, profile_id, data.is_responder, data.is_admin)
    except VigilError as e:
        raise http_error(e)
