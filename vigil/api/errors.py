"""Map service errors onto HTTP responses."""

from fastapi import HTTPException, status

from vigil.core.errors import (
    ConstraintViolationError,
    InvalidTransitionError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
    SessionStartError,
    StoreError,
    VigilError,
)


def http_error(exc: VigilError | ValueError) -> HTTPException:
    """HTTPException for a service error. Order matters: subclasses before StoreError."""
    if isinstance(exc, NotAuthenticatedError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, ConstraintViolationError, SessionStartError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, StoreError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store unavailable, try again")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
