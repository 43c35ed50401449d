"""Responder profiles: registration, login, heartbeat and role flags."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from vigil.core.errors import NotFoundError, PermissionDeniedError
from vigil.core.security import hash_password, verify_password
from vigil.models.responder_profile import ResponderProfile
from vigil.schemas.auth import RegisterRequest

logger = logging.getLogger(__name__)


def get_profile(db: Session, profile_id: uuid.UUID) -> ResponderProfile | None:
    return db.get(ResponderProfile, profile_id)


def get_profile_by_email(db: Session, email: str) -> ResponderProfile | None:
    return db.execute(
        select(ResponderProfile).where(ResponderProfile.email == email)
    ).scalar_one_or_none()


def create_profile(db: Session, data: RegisterRequest) -> ResponderProfile:
    profile = ResponderProfile(
        email=data.email,
        hashed_password=hash_password(data.password),
        is_responder=data.is_responder,
        is_admin=False,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("Registered profile %s (responder=%s)", profile.id, profile.is_responder)
    return profile


def authenticate_profile(db: Session, email: str, password: str) -> ResponderProfile | None:
    """Profile for valid credentials, else None. Inactive profiles cannot log in."""
    profile = get_profile_by_email(db, email)
    if not profile or not verify_password(password, profile.hashed_password):
        return None
    if not profile.is_active:
        return None
    return profile


def heartbeat(db: Session, profile: ResponderProfile) -> ResponderProfile:
    """Mark the profile as seen now; drives the online-responder count."""
    profile.last_seen_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(profile)
    return profile


def set_roles(
    db: Session,
    admin: ResponderProfile,
    target_id: uuid.UUID,
    is_responder: bool | None = None,
    is_admin: bool | None = None,
) -> ResponderProfile:
    """Administrative role-flag change. Only admins may call this."""
    if not admin.is_admin:
        raise PermissionDeniedError("Only admins can change roles")
    target = get_profile(db, target_id)
    if target is None:
        raise NotFoundError("Responder profile", target_id)
    if is_responder is not None:
        target.is_responder = is_responder
    if is_admin is not None:
        target.is_admin = is_admin
    db.commit()
    db.refresh(target)
    logger.info(
        "Admin %s set roles on %s: responder=%s admin=%s",
        admin.id,
        target.id,
        target.is_responder,
        target.is_admin,
    )
    return target
