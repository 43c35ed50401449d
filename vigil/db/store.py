"""Store client: query/insert/update and RPC calls with one retry policy."""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from vigil.core.errors import (
    ConstraintViolationError,
    StoreError,
    TransientStoreError,
)
from vigil.core.retry import RetryPolicy
from vigil.db.procedures import ProcedureRegistry, procedures

logger = logging.getLogger(__name__)

T = TypeVar("T")


def translate_error(exc: SQLAlchemyError) -> StoreError:
    """Map SQLAlchemy errors onto the store error taxonomy."""
    if isinstance(exc, IntegrityError):
        constraint = getattr(getattr(exc.orig, "diag", None), "constraint_name", None)
        return ConstraintViolationError(str(exc.orig), constraint=constraint)
    if isinstance(exc, OperationalError):
        return TransientStoreError(str(exc.orig))
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientStoreError(str(exc.orig))
    return StoreError(str(exc))


class StoreClient:
    """Runs units of work against one session, committing or rolling back each."""

    def __init__(
        self,
        db: Session,
        retry: RetryPolicy | None = None,
        registry: ProcedureRegistry = procedures,
    ) -> None:
        self.db = db
        self.retry = retry or RetryPolicy.from_settings()
        self.registry = registry

    def rpc(self, name: str, **params: Any) -> Any:
        """Call a stored procedure atomically. Unknown/disabled names raise ProcedureUnavailableError."""
        fn = self.registry.resolve(name)
        return self.retry.call(lambda: self._unit(lambda db: fn(db, **params)), label=f"rpc {name}")

    def run(self, work: Callable[[Session], T], label: str = "store call") -> T:
        """Run plain query/insert/update work with retry."""
        return self.retry.call(lambda: self._unit(work), label=label)

    def run_once(self, work: Callable[[Session], T]) -> T:
        """Run work without retry."""
        return self._unit(work)

    def _unit(self, work: Callable[[Session], T]) -> T:
        try:
            result = work(self.db)
            self.db.commit()
            return result
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.debug("Store unit rolled back: %s", exc)
            raise translate_error(exc) from exc
        except Exception:
            self.db.rollback()
            raise
