"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from vigil.core.security import profile_id_from_token
from vigil.db.session import get_db
from vigil.db.store import StoreClient
from vigil.models.responder_profile import ResponderProfile
from vigil.services.commitment import CommitmentCoordinator
from vigil.services.lifecycle import LifecycleManager, Origin
from vigil.services.profiles import get_profile

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_optional_profile(
    db: Annotated[Session, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> ResponderProfile | None:
    """Profile for a bearer token, None when no token is sent. A bad token is still a 401."""
    if not credentials:
        return None
    profile_id = profile_id_from_token(credentials.credentials)
    if profile_id is None:
        raise _unauthorized("Invalid or expired token")
    profile = get_profile(db, profile_id)
    if not profile:
        raise _unauthorized("Profile not found")
    if not profile.is_active:
        raise _unauthorized("Profile is inactive")
    return profile


def get_current_profile(
    profile: Annotated[ResponderProfile | None, Depends(get_optional_profile)],
) -> ResponderProfile:
    """Require an authenticated profile. Raises 401 if not authenticated."""
    if profile is None:
        raise _unauthorized("Not authenticated")
    return profile


def require_admin(
    current_profile: Annotated[ResponderProfile, Depends(get_current_profile)],
) -> ResponderProfile:
    if not current_profile.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_profile


def require_responder(
    current_profile: Annotated[ResponderProfile, Depends(get_current_profile)],
) -> ResponderProfile:
    if not current_profile.is_responder:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only responders can do this")
    return current_profile


def get_origin(
    profile: Annotated[ResponderProfile | None, Depends(get_optional_profile)],
    x_anonymous_id: Annotated[str | None, Header(max_length=64)] = None,
) -> Origin:
    """Signed-in profile, else the caller's anonymous id (minted if absent)."""
    return Origin.for_identity(profile.id if profile else None, x_anonymous_id)


def get_store(db: Annotated[Session, Depends(get_db)]) -> StoreClient:
    return StoreClient(db)


def get_lifecycle(store: Annotated[StoreClient, Depends(get_store)]) -> LifecycleManager:
    return LifecycleManager(store)


def get_coordinator(store: Annotated[StoreClient, Depends(get_store)]) -> CommitmentCoordinator:
    return CommitmentCoordinator(store)
