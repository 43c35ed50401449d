"""Session/alert lifecycle: monitoring sessions, alert creation and termination."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from vigil.core.config import settings
from vigil.core.errors import (
    ConstraintViolationError,
    NotFoundError,
    PermissionDeniedError,
    ProcedureUnavailableError,
    SessionStartError,
    StoreError,
)
from vigil.core.policies import AlertStatus, SessionStatus
from vigil.db.store import StoreClient
from vigil.models.alert import Alert
from vigil.models.monitoring_session import MonitoringSession
from vigil.services import alert_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Origin:
    """Who created a session/alert: a user id XOR an anonymous id."""

    user_id: uuid.UUID | None = None
    anonymous_id: str | None = None

    def __post_init__(self) -> None:
        if (self.user_id is None) == (self.anonymous_id is None):
            raise ValueError("Origin needs exactly one of user_id or anonymous_id")

    @classmethod
    def for_identity(cls, user_id: uuid.UUID | None, anonymous_id: str | None = None) -> Origin:
        """Authenticated user wins; otherwise reuse or mint an anonymous id."""
        if user_id is not None:
            return cls(user_id=user_id)
        return cls(anonymous_id=anonymous_id or uuid.uuid4().hex)

    def owns(self, row: Alert | MonitoringSession) -> bool:
        if self.user_id is not None:
            return row.user_id == self.user_id
        return row.user_id is None and row.anonymous_id == self.anonymous_id

    def where(self, model):
        """Filter clause selecting rows of `model` created by this origin."""
        if self.user_id is not None:
            return model.user_id == self.user_id
        return model.anonymous_id == self.anonymous_id

    @classmethod
    def of(cls, row: Alert | MonitoringSession) -> Origin:
        return cls(user_id=row.user_id, anonymous_id=None if row.user_id else row.anonymous_id)


@dataclass(frozen=True)
class LocationData:
    general: str
    precise: str


@dataclass(frozen=True)
class AlertHandoff:
    """Alert created by the monitoring flow, handed to the emergency flow."""

    alert_id: uuid.UUID
    session_id: uuid.UUID | None
    created_at: datetime
    location: LocationData
    origin: Origin
    source: str = "monitoring"
    handed_off_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LifecycleManager:
    """Creates, mutates and terminates monitoring sessions and alerts."""

    def __init__(self, store: StoreClient, start_retry_delay: float | None = None) -> None:
        self.store = store
        self.start_retry_delay = (
            settings.session_start_retry_delay if start_retry_delay is None else start_retry_delay
        )

    # ---------- monitoring sessions ----------

    def start_session(self, origin: Origin, location: LocationData) -> MonitoringSession:
        """Close any active session for the origin, then open a new one.

        Close-then-insert can race with another tab; a uniqueness conflict is
        retried once after a short delay, repeating the close step.
        """
        last_error: ConstraintViolationError | None = None
        for attempt in (1, 2):
            closed = self._close_active_sessions(origin)
            if closed:
                logger.info("Closed %s superseded session(s) for %s", closed, origin)
            try:
                return self.store.run(
                    lambda db: self._insert_session(db, origin, location),
                    label="start session",
                )
            except ConstraintViolationError as exc:
                last_error = exc
                logger.warning("Session insert conflicted (attempt %s): %s", attempt, exc)
                if attempt == 1:
                    time.sleep(self.start_retry_delay)
        raise SessionStartError(f"Failed to create session after cleanup: {last_error}")

    def _close_active_sessions(self, origin: Origin) -> int:
        def work(db: Session) -> int:
            sessions = db.execute(
                select(MonitoringSession).where(
                    origin.where(MonitoringSession),
                    MonitoringSession.status == SessionStatus.ACTIVE.value,
                )
            ).scalars().all()
            now = datetime.now(timezone.utc)
            for s in sessions:
                s.status = SessionStatus.COMPLETED.value
                s.ended_at = now
            return len(sessions)

        return self.store.run(work, label="close active sessions")

    @staticmethod
    def _insert_session(db: Session, origin: Origin, location: LocationData) -> MonitoringSession:
        session = MonitoringSession(
            user_id=origin.user_id,
            anonymous_id=origin.anonymous_id,
            status=SessionStatus.ACTIVE.value,
            location_general=location.general,
            location_precise=location.precise,
            check_ins_count=0,
        )
        db.add(session)
        db.flush()
        return session

    def get_session(self, session_id: uuid.UUID) -> MonitoringSession:
        session = self.store.run(lambda db: db.get(MonitoringSession, session_id), label="get session")
        if session is None:
            raise NotFoundError("Monitoring session", session_id)
        return session

    def get_active_session(self, origin: Origin) -> MonitoringSession | None:
        return self.store.run(
            lambda db: db.execute(
                select(MonitoringSession).where(
                    origin.where(MonitoringSession),
                    MonitoringSession.status == SessionStatus.ACTIVE.value,
                )
            ).scalar_one_or_none(),
            label="get active session",
        )

    def update_check_in_count(self, session_id: uuid.UUID, count: int) -> MonitoringSession:
        def work(db: Session) -> MonitoringSession:
            session = db.get(MonitoringSession, session_id)
            if session is None:
                raise NotFoundError("Monitoring session", session_id)
            session.check_ins_count = count
            return session

        return self.store.run(work, label="update check-in count")

    def update_session_location(self, session_id: uuid.UUID, location: LocationData) -> MonitoringSession:
        def work(db: Session) -> MonitoringSession:
            session = db.get(MonitoringSession, session_id)
            if session is None:
                raise NotFoundError("Monitoring session", session_id)
            session.location_general = location.general
            session.location_precise = location.precise
            return session

        return self.store.run(work, label="update session location")

    def end_session(self, session_id: uuid.UUID, status: str = SessionStatus.COMPLETED.value) -> bool:
        """Idempotent: a session that already ended is left alone."""
        try:
            ended = self.store.rpc("end_monitoring_session_safe", session_id=session_id, status=status)
        except ProcedureUnavailableError:
            ended = self.store.run(
                lambda db: self._end_session_fallback(db, session_id, status),
                label="end session",
            )
        if not ended:
            logger.info("Session %s already ended, nothing to do", session_id)
        return ended

    @staticmethod
    def _end_session_fallback(db: Session, session_id: uuid.UUID, status: str) -> bool:
        session = db.get(MonitoringSession, session_id)
        if session is None or session.ended_at is not None:
            return False
        session.status = status
        session.ended_at = datetime.now(timezone.utc)
        return True

    # ---------- alerts ----------

    def create_alert(
        self,
        session_id: uuid.UUID | None,
        location: LocationData,
        origin: Origin,
    ) -> Alert:
        """Create an alert; escalate the originating session to emergency.

        The session update is a separate step, so the alert may briefly exist
        while its session still reads active.
        """
        try:
            alert_id = self.store.rpc(
                "create_alert_with_notification",
                session_id=session_id,
                user_id=origin.user_id,
                anonymous_id=origin.anonymous_id,
                general_location=location.general,
                precise_location=location.precise,
            )
        except StoreError as exc:
            logger.warning("Atomic alert creation failed, falling back to insert: %s", exc)
            alert = self.store.run(
                lambda db: self._insert_alert(db, session_id, location, origin),
                label="create alert",
            )
        else:
            # The alert is committed; a failed read-back must not insert another
            alert = self.get_alert(alert_id)
        logger.info("Alert %s created (session=%s)", alert.id, session_id)

        if session_id is not None:
            try:
                self.end_session(session_id, SessionStatus.EMERGENCY.value)
            except StoreError:
                logger.exception("Alert %s created but session %s not marked emergency", alert.id, session_id)
        return alert

    @staticmethod
    def _insert_alert(
        db: Session,
        session_id: uuid.UUID | None,
        location: LocationData,
        origin: Origin,
    ) -> Alert:
        alert = Alert(
            session_id=session_id,
            user_id=origin.user_id,
            anonymous_id=origin.anonymous_id,
            status=AlertStatus.ACTIVE.value,
            general_location=location.general,
            precise_location=location.precise,
            responder_count=0,
        )
        db.add(alert)
        db.flush()
        return alert

    def escalate_session(self, session_id: uuid.UUID, location: LocationData | None = None) -> AlertHandoff:
        """Monitoring escalation: raise an alert for the session and hand it off."""
        session = self.get_session(session_id)
        origin = Origin.of(session)
        location = location or LocationData(
            general=session.location_general or "Location unavailable",
            precise=session.location_precise or "Location unavailable",
        )
        alert = self.create_alert(session_id, location, origin)
        return AlertHandoff(
            alert_id=alert.id,
            session_id=session_id,
            created_at=alert.created_at,
            location=location,
            origin=origin,
        )

    def get_alert(self, alert_id: uuid.UUID) -> Alert:
        alert = self.store.run(lambda db: db.get(Alert, alert_id), label="get alert")
        if alert is None:
            raise NotFoundError("Alert", alert_id)
        return alert

    def cancel_alert(self, alert_id: uuid.UUID, origin: Origin) -> Alert:
        """Originator-only. Responses are left as they are."""

        def work(db: Session) -> Alert:
            alert = db.get(Alert, alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id)
            if not origin.owns(alert):
                raise PermissionDeniedError("Only the originator can cancel this alert")
            if alert_state.normalize(alert.status) == AlertStatus.CANCELLED.value:
                return alert
            alert_state.require_transition(alert.status, AlertStatus.CANCELLED.value)
            alert.status = AlertStatus.CANCELLED.value
            return alert

        alert = self.store.run(work, label="cancel alert")
        logger.info("Alert %s cancelled by originator", alert_id)
        return alert

    def update_alert_location(self, alert_id: uuid.UUID, location: LocationData, origin: Origin) -> Alert:
        """Bumps updated_at so pollers see the change without a push."""

        def work(db: Session) -> Alert:
            alert = db.get(Alert, alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id)
            if not origin.owns(alert):
                raise PermissionDeniedError("Only the originator can move this alert")
            alert.general_location = location.general
            alert.precise_location = location.precise
            alert.updated_at = datetime.now(timezone.utc)
            return alert

        return self.store.run(work, label="update alert location")
