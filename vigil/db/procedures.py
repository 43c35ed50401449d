"""Stored procedures: atomic multi-row updates run inside one transaction.

Each procedure takes the session first and never commits on its own; the
store client commits on success and rolls back on error, so every call is
all-or-nothing.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vigil.core.errors import InvalidTransitionError, NotFoundError, ProcedureUnavailableError
from vigil.core.policies import (
    DEFAULT_CANCELLATION_REASON,
    LIVE_ALERT_STATUSES,
    LIVE_RESPONSE_STATUSES,
    AbandonmentPolicy,
    AlertStatus,
    SessionStatus,
    current_abandonment_policy,
)
from vigil.models.alert import Alert
from vigil.models.monitoring_session import MonitoringSession
from vigil.models.responder_profile import ResponderProfile
from vigil.models.response import Response
from vigil.models.response_cancellation import ResponseCancellation
from vigil.services import alert_state

logger = logging.getLogger(__name__)


def _live_response_count(db: Session, alert_id: uuid.UUID) -> int:
    return db.execute(
        select(func.count(Response.id)).where(
            Response.alert_id == alert_id,
            Response.status.in_(LIVE_RESPONSE_STATUSES),
        )
    ).scalar_one()


def _lock_alert(db: Session, alert_id: uuid.UUID) -> Alert:
    alert = db.execute(
        select(Alert).where(Alert.id == alert_id).with_for_update()
    ).scalar_one_or_none()
    if alert is None:
        raise NotFoundError("Alert", alert_id)
    return alert


def create_alert_with_notification(
    db: Session,
    session_id: uuid.UUID | None,
    user_id: uuid.UUID | None,
    anonymous_id: str | None,
    general_location: str,
    precise_location: str,
) -> uuid.UUID:
    """Insert an active alert. The INSERT notification goes out on commit."""
    alert = Alert(
        session_id=session_id,
        user_id=user_id,
        anonymous_id=anonymous_id,
        status=AlertStatus.ACTIVE.value,
        general_location=general_location,
        precise_location=precise_location,
        responder_count=0,
    )
    db.add(alert)
    db.flush()
    return alert.id


def create_response_safe(
    db: Session,
    alert_id: uuid.UUID,
    responder_id: uuid.UUID,
    status: str = "committed",
) -> tuple[uuid.UUID, bool]:
    """Return (response_id, created). An existing row is returned, never duplicated."""
    stmt = select(Response).where(
        Response.alert_id == alert_id,
        Response.responder_id == responder_id,
    )
    existing = db.execute(stmt).scalar_one_or_none()
    if existing is not None:
        return existing.id, False

    alert = db.get(Alert, alert_id)
    if alert is None:
        raise NotFoundError("Alert", alert_id)
    if alert_state.is_terminal(alert.status):
        raise InvalidTransitionError(alert_state.normalize(alert.status), AlertStatus.RESPONDED.value)

    response = Response(alert_id=alert_id, responder_id=responder_id, status=status)
    nested = db.begin_nested()
    try:
        db.add(response)
        db.flush()
        nested.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert for the same pair
        nested.rollback()
        existing = db.execute(stmt).scalar_one()
        return existing.id, False
    return response.id, True


def increment_responder_count(db: Session, alert_id: uuid.UUID) -> None:
    """Count + 1 and active -> responded, in one UPDATE."""
    alert = db.get(Alert, alert_id)
    if alert is None:
        raise NotFoundError("Alert", alert_id)
    alert.responder_count = Alert.responder_count + 1
    alert.status = case(
        (Alert.status == AlertStatus.ACTIVE.value, AlertStatus.RESPONDED.value),
        else_=Alert.status,
    )
    db.flush()


def decrement_responder_count(
    db: Session,
    alert_id: uuid.UUID,
    policy: AbandonmentPolicy | None = None,
) -> None:
    """Count - 1 floored at zero, with the abandonment status correction."""
    policy = policy or current_abandonment_policy()
    alert = db.get(Alert, alert_id)
    if alert is None:
        raise NotFoundError("Alert", alert_id)
    if policy is AbandonmentPolicy.CANCEL:
        abandoned_from = LIVE_ALERT_STATUSES
        abandoned_to = AlertStatus.CANCELLED.value
    else:
        abandoned_from = (AlertStatus.RESPONDED.value,)
        abandoned_to = AlertStatus.ACTIVE.value
    alert.status = case(
        (
            (Alert.responder_count <= 1) & Alert.status.in_(abandoned_from),
            abandoned_to,
        ),
        else_=Alert.status,
    )
    alert.responder_count = case(
        (Alert.responder_count > 0, Alert.responder_count - 1),
        else_=0,
    )
    db.flush()


def cancel_response_safe(
    db: Session,
    alert_id: uuid.UUID,
    responder_id: uuid.UUID,
    reason: str | None = None,
    details: str | None = None,
    policy: AbandonmentPolicy | None = None,
) -> bool:
    """Delete the live response, log the reason, settle count and status.

    False if there is no live response; a completed one keeps its outcome.
    """
    policy = policy or current_abandonment_policy()
    alert = _lock_alert(db, alert_id)
    response = db.execute(
        select(Response).where(
            Response.alert_id == alert_id,
            Response.responder_id == responder_id,
            Response.status.in_(LIVE_RESPONSE_STATUSES),
        )
    ).scalar_one_or_none()
    if response is None:
        return False

    db.add(
        ResponseCancellation(
            alert_id=alert_id,
            responder_id=responder_id,
            reason=reason or DEFAULT_CANCELLATION_REASON,
            details=details,
        )
    )
    db.delete(response)
    db.flush()

    remaining = _live_response_count(db, alert_id)
    alert.responder_count = remaining
    alert.status = alert_state.status_after_abandon(alert.status, remaining, policy)
    db.flush()
    return True


def end_monitoring_session_safe(db: Session, session_id: uuid.UUID, status: str = "completed") -> bool:
    """End a session once. True if this call ended it."""
    if status not in (SessionStatus.COMPLETED.value, SessionStatus.EMERGENCY.value):
        raise ValueError(f"Invalid terminal session status: {status}")
    session = db.get(MonitoringSession, session_id)
    if session is None or session.ended_at is not None:
        return False
    session.status = status
    session.ended_at = datetime.now(timezone.utc)
    db.flush()
    return True


def reconcile_responder_counts(db: Session) -> int:
    """Rewrite drifted responder_count values on live alerts. Returns rows fixed.

    Live alerts are locked before their responses are counted. Only the count
    and active -> responded are repaired here; abandonment belongs to cancel.
    """
    alerts = db.execute(
        select(Alert)
        .where(Alert.status.in_(LIVE_ALERT_STATUSES))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    fixed = 0
    for alert in alerts:
        actual = _live_response_count(db, alert.id)
        status = alert_state.status_after_commit(alert.status) if actual > 0 else alert.status
        if alert.responder_count == actual and status == alert.status:
            continue
        logger.info("Reconciling alert %s responder_count %s -> %s", alert.id, alert.responder_count, actual)
        alert.responder_count = actual
        alert.status = status
        fixed += 1
    db.flush()
    return fixed


def get_alert_stats(db: Session, online_window_minutes: int = 5) -> dict[str, Any]:
    """Point-in-time snapshot of responder activity."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=online_window_minutes)
    active_responders = db.execute(
        select(func.count(ResponderProfile.id)).where(
            ResponderProfile.is_responder.is_(True),
            ResponderProfile.last_seen_at.is_not(None),
            ResponderProfile.last_seen_at >= cutoff,
        )
    ).scalar_one()
    rows = db.execute(
        select(Response.alert_id, func.count(Response.id))
        .join(Alert, Alert.id == Response.alert_id)
        .where(
            Response.status.in_(LIVE_RESPONSE_STATUSES),
            Alert.status.in_(LIVE_ALERT_STATUSES),
        )
        .group_by(Response.alert_id)
    ).all()
    alert_commitments = {str(alert_id): count for alert_id, count in rows}
    return {
        "active_responders": active_responders,
        "committed_responders": sum(alert_commitments.values()),
        "alert_commitments": alert_commitments,
    }


class ProcedureRegistry:
    """Name -> procedure lookup. Disabled names behave as missing procedures."""

    def __init__(self, procedures: dict[str, Callable[..., Any]]) -> None:
        self._procedures = dict(procedures)
        self._disabled: set[str] = set()

    def resolve(self, name: str) -> Callable[..., Any]:
        fn = self._procedures.get(name)
        if fn is None or name in self._disabled:
            raise ProcedureUnavailableError(name)
        return fn

    def disable(self, name: str) -> None:
        logger.warning("Stored procedure %s disabled", name)
        self._disabled.add(name)

    def enable(self, name: str) -> None:
        self._disabled.discard(name)

    def enable_all(self) -> None:
        self._disabled.clear()

    @property
    def names(self) -> list[str]:
        return sorted(self._procedures)


procedures = ProcedureRegistry(
    {
        "create_alert_with_notification": create_alert_with_notification,
        "create_response_safe": create_response_safe,
        "increment_responder_count": increment_responder_count,
        "decrement_responder_count": decrement_responder_count,
        "cancel_response_safe": cancel_response_safe,
        "end_monitoring_session_safe": end_monitoring_session_safe,
        "reconcile_responder_counts": reconcile_responder_counts,
        "get_alert_stats": get_alert_stats,
    }
)
