"""Alert and commitment endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, Response, status
from sqlalchemy import select

from vigil.api.errors import http_error
from vigil.core.deps import (
    get_coordinator,
    get_lifecycle,
    get_optional_profile,
    get_origin,
    get_store,
    require_responder,
)
from vigil.core.errors import PermissionDeniedError, VigilError
from vigil.core.policies import LIVE_ALERT_STATUSES
from vigil.db.store import StoreClient
from vigil.models.alert import Alert
from vigil.models.responder_profile import ResponderProfile
from vigil.schemas.alert import (
    AlertCreate,
    AlertResponse,
    CancelResponseRequest,
    CancelResponseResult,
    CommitResponse,
    OutcomeRequest,
    ProgressUpdate,
    ResponseOut,
)
from vigil.schemas.session import LocationIn
from vigil.services.commitment import CancellationReason, CommitmentCoordinator, ResponseOutcome
from vigil.services.lifecycle import LifecycleManager, LocationData, Origin

router = APIRouter(prefix="/alerts", tags=["alerts"])


def _present(alert: Alert, show_precise: bool) -> AlertResponse:
    """Fine location only for the originator and committed responders."""
    out = AlertResponse.model_validate(alert)
    if not show_precise:
        out.precise_location = None
    return out


@router.post("", response_model=AlertResponse, status_code=status.HTTP_201_CREATED)
def create_alert(
    data: AlertCreate,
    response: Response,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Raise an alert. Signed-in or anonymous (X-Anonymous-Id)."""
    if data.session_id is not None:
        try:
            session = lifecycle.get_session(data.session_id)
        except VigilError as e:
            raise http_error(e)
        if not origin.owns(session):
            raise http_error(PermissionDeniedError("Session belongs to a different origin"))
    try:
        alert = lifecycle.create_alert(
            data.session_id,
            LocationData(data.location.general, data.location.precise),
            origin,
        )
    except VigilError as e:
        raise http_error(e)
    if origin.anonymous_id:
        response.headers["X-Anonymous-Id"] = origin.anonymous_id
    return _present(alert, show_precise=True)


@router.get("", response_model=list[AlertResponse])
def list_live_alerts(
    store: StoreClient = Depends(get_store),
    coordinator: CommitmentCoordinator = Depends(get_coordinator),
    profile: ResponderProfile | None = Depends(get_optional_profile),
):
    """Non-terminal alerts, newest first."""
    alerts = store.run(
        lambda db: db.execute(
            select(Alert).where(Alert.status.in_(LIVE_ALERT_STATUSES)).order_by(Alert.created_at.desc())
        ).scalars().all(),
        label="list live alerts",
    )
    committed = coordinator.commitments_for(profile.id) if profile else {}
    return [
        _present(a, show_precise=a.id in committed or (profile is not None and a.user_id == profile.id))
        for a in alerts
    ]


@router.post("/{alert_id}/cancel", response_model=AlertResponse)
def cancel_alert(
    alert_id: uuid.UUID,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Originator cancels their own alert."""
    try:
        return _present(lifecycle.cancel_alert(alert_id, origin), show_precise=True)
    except VigilError as e:
        raise http_error(e)


@router.put("/{alert_id}/location", response_model=AlertResponse)
def update_alert_location(
    alert_id: uuid.UUID,
    data: LocationIn,
    origin: Origin = Depends(get_origin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    try:
        alert = lifecycle.update_alert_location(alert_id, LocationData(data.general, data.precise), origin)
        return _present(alert, show_precise=True)
    except VigilError as e:
        raise http_error(e)


# ---------- responder commitments ----------


@router.post("/{alert_id}/commit", response_model=CommitResponse)
def commit(
    alert_id: uuid.UUID,
    responder: ResponderProfile = Depends(require_responder),
    coordinator: CommitmentCoordinator = Depends(get_coordinator),
):
    """Commit to respond. Committing twice returns the same response."""
    try:
        result = coordinator.commit(alert_id, responder.id)
    except VigilError as e:
        raise http_error(e)
    return CommitResponse(response_id=result.response_id, created=result.created)


@router.post("/{alert_id}/cancel-response", response_model=CancelResponseResult)
def cancel_response(
    alert_id: uuid.UUID,
    data: CancelResponseRequest | None = Body(default=None),
    responder: ResponderProfile = Depends(require_responder),
    coordinator: CommitmentCoordinator = Depends(get_coordinator),
):
    """Withdraw a commitment. A response that is already gone reports not_found."""
    d = data or CancelResponseRequest()
    try:
        outcome = coordinator.cancel(alert_id, responder.id, CancellationReason(d.reason, d.details))
    except VigilError as e:
        raise http_error(e)
    return CancelResponseResult(outcome=outcome.value)


@router.post("/{alert_id}/progress", response_model=ResponseOut)
def advance_response(
    alert_id: uuid.UUID,
    data: ProgressUpdate,
    responder: ResponderProfile = Depends(require_responder),
    coordinator: CommitmentCoordinator = Depends(get_coordinator),
):
    """Report progress: committed -> en_route -> arrived."""
    try:
        return coordinator.advance_response(alert_id, responder.id, data.status)
    except (VigilError, ValueError) as e:
        raise http_error(e)


@router.post("/{alert_id}/end-response", response_model=ResponseOut)
def end_response(
    alert_id: uuid.UUID,
    data: OutcomeRequest | None = Body(default=None),
    responder: ResponderProfile = Depends(require_responder),
    coordinator: CommitmentCoordinator = Depends(get_coordinator),
):
    """Complete the response with its outcome and resolve the alert."""
    d = data or OutcomeRequest()
    outcome = ResponseOutcome(
        ambulance_called=d.ambulance_called,
        person_okay=d.person_okay,
        naloxone_used=d.naloxone_used,
        additional_notes=d.additional_notes,
    )
    try:
        return coordinator.end_response(alert_id, responder.id, outcome)
    except VigilError as e:
        raise http_error(e)
