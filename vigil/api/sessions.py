"""Monitoring session endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response, status

from vigil.api.errors import http_error
from vigil.core.deps import get_lifecycle, get_origin
from vigil.core.errors import VigilError
from vigil.models.monitoring_session import MonitoringSession
from vigil.schemas.session import (
    AlertHandoffResponse,
    CheckInUpdate,
    LocationIn,
    SessionEnd,
    SessionResponse,
    SessionStart,
)
from vigil.services.lifecycle import LifecycleManager, LocationData, Origin

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _owned_session(lifecycle: LifecycleManager, session_id: uuid.UUID, origin: Origin) -> MonitoringSession:
    try:
        session = lifecycle.get_session(session_id)
    except VigilError as e:
        raise http_error(e)
    if not origin.owns(session):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your session")
    return session


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def start_session(
    data: SessionStart,
    response: Response,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Start monitoring. Any active session for the same origin is closed first."""
    try:
        session = lifecycle.start_session(origin, LocationData(data.location.general, data.location.precise))
    except VigilError as e:
        raise http_error(e)
    if origin.anonymous_id:
        response.headers["X-Anonymous-Id"] = origin.anonymous_id
    return session


@router.get("/active", response_model=SessionResponse | None)
def active_session(
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    return lifecycle.get_active_session(origin)


@router.put("/{session_id}/check-ins", response_model=SessionResponse)
def update_check_ins(
    session_id: uuid.UUID,
    data: CheckInUpdate,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    _owned_session(lifecycle, session_id, origin)
    try:
        return lifecycle.update_check_in_count(session_id, data.count)
    except VigilError as e:
        raise http_error(e)


@router.put("/{session_id}/location", response_model=SessionResponse)
def update_location(
    session_id: uuid.UUID,
    data: LocationIn,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    _owned_session(lifecycle, session_id, origin)
    try:
        return lifecycle.update_session_location(session_id, LocationData(data.general, data.precise))
    except VigilError as e:
        raise http_error(e)


@router.post("/{session_id}/end", response_model=SessionResponse)
def end_session(
    session_id: uuid.UUID,
    data: SessionEnd | None = None,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """End the session. Ending an already-ended session is a no-op."""
    _owned_session(lifecycle, session_id, origin)
    try:
        lifecycle.end_session(session_id, (data or SessionEnd()).status)
        return lifecycle.get_session(session_id)
    except (VigilError, ValueError) as e:
        raise http_error(e)


@router.post("/{session_id}/escalate", response_model=AlertHandoffResponse, status_code=status.HTTP_201_CREATED)
def escalate_session(
    session_id: uuid.UUID,
    data: LocationIn | None = None,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Missed check-in: raise an alert for the session and mark it emergency."""
    session = _owned_session(lifecycle, session_id, origin)
    if session.ended_at is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session already ended")
    location = LocationData(data.general, data.precise) if data else None
    try:
        handoff = lifecycle.escalate_session(session_id, location)
    except VigilError as e:
        raise http_error(e)
    return AlertHandoffResponse(
        alert_id=handoff.alert_id,
        session_id=handoff.session_id,
        created_at=handoff.created_at,
        general_location=handoff.location.general,
        precise_location=handoff.location.precise,
        source=handoff.source,
    )
