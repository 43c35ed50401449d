"""Alert state machine tests."""

import pytest

from vigil.core.errors import InvalidTransitionError
from vigil.core.policies import AbandonmentPolicy
from vigil.services import alert_state


def test_first_commit_moves_active_to_responded():
    assert alert_state.status_after_commit("active") == "responded"
    assert alert_state.status_after_commit("responded") == "responded"


def test_terminal_states_never_regress():
    for terminal in ("resolved", "cancelled", "false_alarm"):
        for target in ("active", "responded", "resolved", "cancelled"):
            assert not alert_state.can_transition(terminal, target)


def test_false_alarm_reads_as_cancelled():
    assert alert_state.normalize("false_alarm") == "cancelled"
    assert alert_state.is_terminal("false_alarm")


def test_require_transition_raises_with_current_and_target():
    with pytest.raises(InvalidTransitionError) as exc:
        alert_state.require_transition("resolved", "active")
    assert exc.value.current == "resolved"
    assert exc.value.attempted == "active"


def test_live_states_can_be_resolved_or_cancelled():
    for live in ("active", "responded"):
        assert alert_state.can_transition(live, "resolved")
        assert alert_state.can_transition(live, "cancelled")


def test_abandon_revert_policy():
    policy = AbandonmentPolicy.REVERT_TO_ACTIVE
    assert alert_state.status_after_abandon("responded", 0, policy) == "active"
    assert alert_state.status_after_abandon("responded", 1, policy) == "responded"
    assert alert_state.status_after_abandon("resolved", 0, policy) == "resolved"


def test_abandon_cancel_policy():
    policy = AbandonmentPolicy.CANCEL
    assert alert_state.status_after_abandon("responded", 0, policy) == "cancelled"
    assert alert_state.status_after_abandon("active", 0, policy) == "cancelled"
    assert alert_state.status_after_abandon("responded", 2, policy) == "responded"
