"""Commitment coordinator tests."""

import threading

import pytest

from tests.conftest import LOCATION, TestingSessionLocal
from vigil.core.errors import InvalidTransitionError, NotAuthenticatedError, StoreError
from vigil.core.policies import AbandonmentPolicy
from vigil.core.retry import RetryPolicy
from vigil.db.procedures import procedures
from vigil.db.store import StoreClient
from vigil.models.response import Response
from vigil.models.response_cancellation import ResponseCancellation
from vigil.services.commitment import (
    CancellationReason,
    CancelOutcome,
    CommitmentCoordinator,
    CommitResult,
    ResponseOutcome,
)
from vigil.services.lifecycle import Origin


def _alert_state(lifecycle, alert_id):
    alert = lifecycle.get_alert(alert_id)
    lifecycle.store.db.refresh(alert)
    return alert.status, alert.responder_count


def test_commit_then_cancel_reverts_to_active(lifecycle, coordinator, make_profile, make_alert):
    alert = make_alert()
    responder = make_profile()

    result = coordinator.commit(alert.id, responder.id)
    assert result.created is True
    assert _alert_state(lifecycle, alert.id) == ("responded", 1)

    outcome = coordinator.cancel(alert.id, responder.id, CancellationReason("Too far away"))
    assert outcome is CancelOutcome.CANCELLED
    assert _alert_state(lifecycle, alert.id) == ("active", 0)
    assert coordinator.find_response(alert.id, responder.id) is None


def test_last_cancel_under_cancel_policy_cancels_alert(store, lifecycle, make_profile, make_alert):
    coordinator = CommitmentCoordinator(store, policy=AbandonmentPolicy.CANCEL)
    alert = make_alert()
    responder = make_profile()

    coordinator.commit(alert.id, responder.id)
    coordinator.cancel(alert.id, responder.id)

    assert _alert_state(lifecycle, alert.id) == ("cancelled", 0)


def test_two_responders_one_cancels(lifecycle, coordinator, make_profile, make_alert):
    alert = make_alert()
    first, second = make_profile(), make_profile()

    coordinator.commit(alert.id, first.id)
    coordinator.commit(alert.id, second.id)
    assert _alert_state(lifecycle, alert.id) == ("responded", 2)

    coordinator.cancel(alert.id, first.id)
    assert _alert_state(lifecycle, alert.id) == ("responded", 1)


def test_concurrent_commits_from_two_responders(lifecycle, make_profile, make_alert):
    alert = make_alert()
    responder_ids = [make_profile().id, make_profile().id]
    barrier = threading.Barrier(len(responder_ids))
    results, errors = [], []

    def commit(responder_id):
        db = TestingSessionLocal()
        try:
            store = StoreClient(db, retry=RetryPolicy(max_attempts=5, base_delay=0.05))
            coordinator = CommitmentCoordinator(store, policy=AbandonmentPolicy.REVERT_TO_ACTIVE)
            barrier.wait()
            results.append(coordinator.commit(alert.id, responder_id))
        except Exception as exc:
            errors.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=commit, args=(rid,)) for rid in responder_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert [r.created for r in results] == [True, True]
    assert lifecycle.store.db.query(Response).filter_by(alert_id=alert.id).count() == 2
    assert _alert_state(lifecycle, alert.id) == ("responded", 2)


def test_lost_insert_race_reuses_winning_response(lifecycle, coordinator, make_profile, make_alert, monkeypatch):
    alert = make_alert()
    responder = make_profile()
    winner = coordinator.commit(alert.id, responder.id)

    procedures.disable("create_response_safe")
    real_find = coordinator.find_response
    lookups = []

    def find_missing_first(alert_id, responder_id):
        lookups.append(responder_id)
        if len(lookups) == 1:
            return None
        return real_find(alert_id, responder_id)

    monkeypatch.setattr(coordinator, "find_response", find_missing_first)
    result = coordinator.commit(alert.id, responder.id)

    assert result == CommitResult(winner.response_id, created=False)
    assert len(lookups) == 2
    assert lifecycle.store.db.query(Response).filter_by(alert_id=alert.id).count() == 1
    assert _alert_state(lifecycle, alert.id) == ("responded", 1)


def test_commit_is_idempotent(lifecycle, coordinator, make_profile, make_alert):
    alert = make_alert()
    responder = make_profile()

    first = coordinator.commit(alert.id, responder.id)
    again = coordinator.commit(alert.id, responder.id)

    assert again.created is False
    assert again.response_id == first.response_id
    assert _alert_state(lifecycle, alert.id) == ("responded", 1)


def test_commit_requires_identity(coordinator, make_alert):
    with pytest.raises(NotAuthenticatedError):
        coordinator.commit(make_alert().id, None)


def test_commit_to_resolved_alert_is_refused(lifecycle, coordinator, make_profile, make_alert):
    alert = make_alert()
    first, late = make_profile(), make_profile()
    coordinator.commit(alert.id, first.id)
    coordinator.end_response(alert.id, first.id)

    with pytest.raises(InvalidTransitionError):
        coordinator.commit(alert.id, late.id)


def test_commit_fallback_when_procedure_disabled(lifecycle, coordinator, make_profile, make_alert):
    procedures.disable("create_response_safe")
    alert = make_alert()
    responder = make_profile()

    first = coordinator.commit(alert.id, responder.id)
    again = coordinator.commit(alert.id, responder.id)

    assert first.created is True
    assert again.response_id == first.response_id
    assert _alert_state(lifecycle, alert.id) == ("responded", 1)


def test_failed_increment_keeps_response_row(lifecycle, coordinator, make_profile, make_alert):
    procedures.disable("increment_responder_count")
    alert = make_alert()
    responder = make_profile()

    with pytest.raises(StoreError):
        coordinator.commit(alert.id, responder.id)

    assert coordinator.find_response(alert.id, responder.id) is not None
    assert _alert_state(lifecycle, alert.id) == ("active", 0)


def test_cancel_without_response_is_not_found(coordinator, make_profile, make_alert):
    assert coordinator.cancel(make_alert().id, make_profile().id) is CancelOutcome.NOT_FOUND


def test_cancel_step_by_step_fallback(db, lifecycle, coordinator, make_profile, make_alert):
    alert = make_alert()
    responder = make_profile()
    coordinator.commit(alert.id, responder.id)

    procedures.disable("cancel_response_safe")
    outcome = coordinator.cancel(alert.id, responder.id, CancellationReason("Other", "Car broke down"))

    assert outcome is CancelOutcome.CANCELLED
    assert _alert_state(lifecycle, alert.id) == ("active", 0)
    record = db.query(ResponseCancellation).filter_by(alert_id=alert.id).one()
    assert (record.reason, record.details) == ("Other", "Car broke down")
    assert coordinator.cancel(alert.id, responder.id) is CancelOutcome.NOT_FOUND


def test_end_response_resolves_alert(lifecycle, coordinator, make_profile, make_alert):
    alert = make_alert()
    responder = make_profile()
    coordinator.commit(alert.id, responder.id)

    response = coordinator.end_response(
        alert.id,
        responder.id,
        ResponseOutcome(ambulance_called=True, naloxone_used=True, additional_notes="Breathing"),
    )

    assert response.status == "completed"
    assert response.naloxone_used is True
    assert _alert_state(lifecycle, alert.id) == ("resolved", 0)
    assert coordinator.commitments_for(responder.id) == {}


@pytest.mark.parametrize("atomic", [True, False])
def test_cancel_after_end_response_keeps_outcome(db, lifecycle, coordinator, make_profile, make_alert, atomic):
    alert = make_alert()
    responder = make_profile()
    coordinator.commit(alert.id, responder.id)
    coordinator.end_response(alert.id, responder.id, ResponseOutcome(naloxone_used=True, additional_notes="Breathing"))
    if not atomic:
        procedures.disable("cancel_response_safe")

    assert coordinator.cancel(alert.id, responder.id) is CancelOutcome.NOT_FOUND

    response = coordinator.find_response(alert.id, responder.id)
    assert (response.status, response.naloxone_used, response.additional_notes) == ("completed", True, "Breathing")
    assert db.query(ResponseCancellation).filter_by(alert_id=alert.id).count() == 0
    assert _alert_state(lifecycle, alert.id) == ("resolved", 0)


def test_end_response_on_cancelled_alert_records_outcome_only(lifecycle, coordinator, make_profile, make_alert):
    origin = Origin.for_identity(None)
    alert = make_alert(origin)
    responder = make_profile()
    coordinator.commit(alert.id, responder.id)
    lifecycle.cancel_alert(alert.id, origin)

    response = coordinator.end_response(alert.id, responder.id, ResponseOutcome(person_okay=True))

    assert response.person_okay is True
    assert _alert_state(lifecycle, alert.id)[0] == "cancelled"


def test_advance_response_is_forward_only(coordinator, make_profile, make_alert):
    alert = make_alert()
    responder = make_profile()
    coordinator.commit(alert.id, responder.id)

    assert coordinator.advance_response(alert.id, responder.id, "en_route").status == "en_route"
    assert coordinator.advance_response(alert.id, responder.id, "arrived").status == "arrived"
    with pytest.raises(InvalidTransitionError):
        coordinator.advance_response(alert.id, responder.id, "committed")
    with pytest.raises(ValueError):
        coordinator.advance_response(alert.id, responder.id, "completed")


def test_commitments_for_lists_live_responses(coordinator, make_profile, make_alert):
    responder = make_profile()
    first, second = make_alert(), make_alert()
    coordinator.commit(first.id, responder.id)
    coordinator.commit(second.id, responder.id)
    coordinator.advance_response(second.id, responder.id, "en_route")

    assert coordinator.commitments_for(responder.id) == {first.id: "committed", second.id: "en_route"}


def test_escalated_session_then_originator_cancels(db, lifecycle, coordinator, make_profile):
    origin = Origin.for_identity(None)
    session = lifecycle.start_session(origin, LOCATION)
    handoff = lifecycle.escalate_session(session.id)

    lifecycle.cancel_alert(handoff.alert_id, origin)

    db.refresh(session)
    assert session.status == "emergency"
    assert _alert_state(lifecycle, handoff.alert_id)[0] == "cancelled"
    with pytest.raises(InvalidTransitionError):
        coordinator.commit(handoff.alert_id, make_profile().id)
