"""Error taxonomy shared by the store, services and sync layer."""

from __future__ import annotations


class VigilError(Exception):
    """Base class for all vigil errors."""


class StoreError(VigilError):
    """The durable store rejected or failed an operation."""


class TransientStoreError(StoreError):
    """Network blip or momentary unavailability. Safe to retry."""


class ConstraintViolationError(StoreError):
    """A uniqueness or check constraint rejected a write."""

    def __init__(self, message: str, constraint: str | None = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class ProcedureUnavailableError(StoreError):
    """A stored procedure is missing or disabled."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Stored procedure '{name}' is unavailable")
        self.name = name


class NotAuthenticatedError(VigilError):
    """Operation requires an identity and none is present."""

    def __init__(self, message: str = "Must be authenticated to perform this action") -> None:
        super().__init__(message)


class PermissionDeniedError(VigilError):
    """Identity present but not allowed to act on the row."""


class NotFoundError(VigilError):
    """Referenced row does not exist."""

    def __init__(self, resource: str, identifier: object | None = None) -> None:
        message = f"{resource} not found"
        if identifier is not None:
            message += f" (id: {identifier})"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class SessionStartError(VigilError):
    """A monitoring session could not be created after cleanup retries."""


class InvalidTransitionError(VigilError):
    """Requested alert state change is not allowed."""

    def __init__(self, current: str, attempted: str) -> None:
        super().__init__(f"Cannot change alert status from '{current}' to '{attempted}'")
        self.current = current
        self.attempted = attempted
