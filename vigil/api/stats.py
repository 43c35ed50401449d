"""Responder stats and the caller's own commitments."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from vigil.api.errors import http_error
from vigil.core.config import settings
from vigil.core.deps import get_coordinator, get_current_profile, get_store
from vigil.core.errors import ProcedureUnavailableError, VigilError
from vigil.db.store import StoreClient
from vigil.models.responder_profile import ResponderProfile
from vigil.schemas.alert import StatsResponse
from vigil.services.commitment import CommitmentCoordinator
from vigil.sync.sources import aggregate_stats
from vigil.sync.state import StatsSnapshot

router = APIRouter(tags=["stats"])


@router.get("/stats", response_model=StatsResponse)
def get_stats(store: StoreClient = Depends(get_store)):
    """Online responders and per-alert commitment counts."""
    try:
        try:
            snapshot = StatsSnapshot.from_dict(
                store.rpc("get_alert_stats", online_window_minutes=settings.online_window_minutes)
            )
        except ProcedureUnavailableError:
            snapshot = store.run(
                lambda db: aggregate_stats(db, settings.online_window_minutes),
                label="aggregate stats",
            )
    except VigilError as e:
        raise http_error(e)
    return StatsResponse(
        active_responders=snapshot.active_responders,
        committed_responders=snapshot.committed_responders,
        alert_commitments=snapshot.alert_commitments,
    )


@router.get("/responses/mine", response_model=dict[str, str])
def my_commitments(
    profile: ResponderProfile = Depends(get_current_profile),
    coordinator: CommitmentCoordinator = Depends(get_coordinator),
):
    """{alert_id: status} for the caller's live responses."""
    return {str(alert_id): status for alert_id, status in coordinator.commitments_for(profile.id).items()}
