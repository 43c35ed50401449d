"""Commitment coordinator: responders committing to, cancelling and ending responses."""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from vigil.core.errors import (
    ConstraintViolationError,
    InvalidTransitionError,
    NotAuthenticatedError,
    NotFoundError,
    ProcedureUnavailableError,
    StoreError,
)
from vigil.core.policies import (
    DEFAULT_CANCELLATION_REASON,
    LIVE_RESPONSE_STATUSES,
    RESPONSE_PROGRESS,
    AbandonmentPolicy,
    AlertStatus,
    ResponseStatus,
    current_abandonment_policy,
)
from vigil.db.store import StoreClient
from vigil.models.alert import Alert
from vigil.models.response import Response
from vigil.models.response_cancellation import ResponseCancellation
from vigil.services import alert_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationReason:
    reason: str = DEFAULT_CANCELLATION_REASON
    details: str | None = None


@dataclass(frozen=True)
class ResponseOutcome:
    ambulance_called: bool = False
    person_okay: bool = False
    naloxone_used: bool = False
    additional_notes: str = ""


@dataclass(frozen=True)
class CommitResult:
    response_id: uuid.UUID
    created: bool


class CancelOutcome(str, enum.Enum):
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


class CommitmentCoordinator:
    """Owns commit/cancel/end-response and the responder_count bookkeeping."""

    def __init__(self, store: StoreClient, policy: AbandonmentPolicy | None = None) -> None:
        self.store = store
        self.policy = policy or current_abandonment_policy()

    def commit(self, alert_id: uuid.UUID, responder_id: uuid.UUID | None) -> CommitResult:
        """Idempotent: re-committing returns the existing response without recounting.

        If the increment fails after the response row exists, the error is
        raised and the row is kept; the count catches up on the next resync.
        """
        if responder_id is None:
            raise NotAuthenticatedError()

        existing = self.find_response(alert_id, responder_id)
        if existing is not None:
            logger.info("Responder %s already committed to alert %s", responder_id, alert_id)
            return CommitResult(existing.id, created=False)

        try:
            response_id, created = self.store.rpc(
                "create_response_safe",
                alert_id=alert_id,
                responder_id=responder_id,
                status=ResponseStatus.COMMITTED.value,
            )
        except ProcedureUnavailableError:
            response_id, created = self._insert_response(alert_id, responder_id)

        if created:
            try:
                self.store.rpc("increment_responder_count", alert_id=alert_id)
            except StoreError:
                logger.error(
                    "Response %s created but responder_count for alert %s not incremented",
                    response_id,
                    alert_id,
                )
                raise
            logger.info("Responder %s committed to alert %s", responder_id, alert_id)
        return CommitResult(response_id, created=created)

    def _insert_response(self, alert_id: uuid.UUID, responder_id: uuid.UUID) -> tuple[uuid.UUID, bool]:
        def work(db: Session) -> uuid.UUID:
            alert = db.get(Alert, alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id)
            if alert_state.is_terminal(alert.status):
                raise InvalidTransitionError(alert_state.normalize(alert.status), AlertStatus.RESPONDED.value)
            response = Response(
                alert_id=alert_id,
                responder_id=responder_id,
                status=ResponseStatus.COMMITTED.value,
            )
            db.add(response)
            db.flush()
            return response.id

        try:
            return self.store.run(work, label="insert response"), True
        except ConstraintViolationError:
            # Concurrent commit for the same pair won; theirs is ours
            existing = self.find_response(alert_id, responder_id)
            if existing is None:
                raise
            return existing.id, False

    def cancel(
        self,
        alert_id: uuid.UUID,
        responder_id: uuid.UUID | None,
        reason: CancellationReason | None = None,
    ) -> CancelOutcome:
        """Withdraw a live commitment. A response that is gone or completed is NOT_FOUND, not an error."""
        if responder_id is None:
            raise NotAuthenticatedError()
        reason = reason or CancellationReason()

        try:
            removed = self.store.rpc(
                "cancel_response_safe",
                alert_id=alert_id,
                responder_id=responder_id,
                reason=reason.reason,
                details=reason.details,
                policy=self.policy,
            )
        except ProcedureUnavailableError:
            logger.warning("cancel_response_safe unavailable, cancelling alert %s step by step", alert_id)
            removed = self._cancel_in_steps(alert_id, responder_id, reason)

        if not removed:
            logger.info("No response from %s on alert %s to cancel", responder_id, alert_id)
            return CancelOutcome.NOT_FOUND
        logger.info("Responder %s cancelled on alert %s (%s)", responder_id, alert_id, reason.reason)
        return CancelOutcome.CANCELLED

    def _cancel_in_steps(
        self,
        alert_id: uuid.UUID,
        responder_id: uuid.UUID,
        reason: CancellationReason,
    ) -> bool:
        """Delete, record reason, recount, correct status: four separate units.

        Not atomic. A failure part way leaves count or status briefly wrong
        until the next full resync repairs it.
        """

        def delete(db: Session) -> bool:
            response = db.execute(
                select(Response).where(
                    Response.alert_id == alert_id,
                    Response.responder_id == responder_id,
                    Response.status.in_(LIVE_RESPONSE_STATUSES),
                )
            ).scalar_one_or_none()
            if response is None:
                return False
            db.delete(response)
            return True

        if not self.store.run(delete, label="delete response"):
            return False

        def record(db: Session) -> None:
            db.add(
                ResponseCancellation(
                    alert_id=alert_id,
                    responder_id=responder_id,
                    reason=reason.reason,
                    details=reason.details,
                )
            )

        self.store.run(record, label="record cancellation")

        def recount(db: Session) -> int:
            remaining = db.execute(
                select(func.count(Response.id)).where(
                    Response.alert_id == alert_id,
                    Response.status.in_(LIVE_RESPONSE_STATUSES),
                )
            ).scalar_one()
            alert = db.get(Alert, alert_id)
            if alert is not None:
                alert.responder_count = remaining
            return remaining

        remaining = self.store.run(recount, label="recount responders")

        def correct_status(db: Session) -> None:
            alert = db.get(Alert, alert_id)
            if alert is None:
                return
            new_status = alert_state.status_after_abandon(alert.status, remaining, self.policy)
            if new_status != alert.status:
                alert.status = new_status

        self.store.run(correct_status, label="correct alert status")
        return True

    def end_response(
        self,
        alert_id: uuid.UUID,
        responder_id: uuid.UUID | None,
        outcome: ResponseOutcome | None = None,
    ) -> Response:
        """Complete the response with its outcome and resolve the alert."""
        if responder_id is None:
            raise NotAuthenticatedError()
        outcome = outcome or ResponseOutcome()

        def work(db: Session) -> Response:
            response = db.execute(
                select(Response).where(
                    Response.alert_id == alert_id,
                    Response.responder_id == responder_id,
                )
            ).scalar_one_or_none()
            if response is None:
                raise NotFoundError("Response", f"{alert_id}/{responder_id}")
            response.status = ResponseStatus.COMPLETED.value
            response.ambulance_called = outcome.ambulance_called
            response.person_okay = outcome.person_okay
            response.naloxone_used = outcome.naloxone_used
            response.additional_notes = outcome.additional_notes
            db.flush()

            alert = db.get(Alert, alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id)
            if not alert_state.is_terminal(alert.status):
                alert.status = AlertStatus.RESOLVED.value
            else:
                logger.info("Alert %s already %s; recording outcome only", alert_id, alert.status)
            alert.responder_count = db.execute(
                select(func.count(Response.id)).where(
                    Response.alert_id == alert_id,
                    Response.status.in_(LIVE_RESPONSE_STATUSES),
                )
            ).scalar_one()
            return response

        response = self.store.run(work, label="end response")
        logger.info("Responder %s ended response on alert %s", responder_id, alert_id)
        return response

    def advance_response(self, alert_id: uuid.UUID, responder_id: uuid.UUID | None, status: str) -> Response:
        """Move committed -> en_route -> arrived. Never backwards."""
        if responder_id is None:
            raise NotAuthenticatedError()
        if status not in RESPONSE_PROGRESS:
            raise ValueError(f"Invalid progress status: {status}")

        def work(db: Session) -> Response:
            response = db.execute(
                select(Response).where(
                    Response.alert_id == alert_id,
                    Response.responder_id == responder_id,
                )
            ).scalar_one_or_none()
            if response is None:
                raise NotFoundError("Response", f"{alert_id}/{responder_id}")
            if response.status not in RESPONSE_PROGRESS:
                raise InvalidTransitionError(response.status, status)
            if RESPONSE_PROGRESS.index(status) < RESPONSE_PROGRESS.index(response.status):
                raise InvalidTransitionError(response.status, status)
            if response.status != status:
                response.status = status
            return response

        return self.store.run(work, label="advance response")

    def find_response(self, alert_id: uuid.UUID, responder_id: uuid.UUID) -> Response | None:
        return self.store.run(
            lambda db: db.execute(
                select(Response).where(
                    Response.alert_id == alert_id,
                    Response.responder_id == responder_id,
                )
            ).scalar_one_or_none(),
            label="find response",
        )

    def commitments_for(self, responder_id: uuid.UUID) -> dict[uuid.UUID, str]:
        """Live responses of one responder as {alert_id: status}."""
        rows = self.store.run(
            lambda db: db.execute(
                select(Response.alert_id, Response.status).where(
                    Response.responder_id == responder_id,
                    Response.status.in_(LIVE_RESPONSE_STATUSES),
                )
            ).all(),
            label="list commitments",
        )
        return {alert_id: status for alert_id, status in rows}
