"""Alert lifecycle state machine.

    active ──first commit──▶ responded ──end response──▶ resolved
      │  ▲                      │
      │  └──last cancel (REVERT_TO_ACTIVE)
      │                         │
      └────────originator cancel / last cancel (CANCEL)──▶ cancelled

``resolved`` and ``cancelled`` are terminal. ``false_alarm`` only exists in
legacy rows and is read as ``cancelled``.
"""

from __future__ import annotations

from vigil.core.errors import InvalidTransitionError
from vigil.core.policies import AbandonmentPolicy, AlertStatus

TERMINAL_STATUSES = frozenset(
    {AlertStatus.RESOLVED.value, AlertStatus.CANCELLED.value, AlertStatus.FALSE_ALARM.value}
)

_ALLOWED: dict[str, frozenset[str]] = {
    AlertStatus.ACTIVE.value: frozenset(
        {AlertStatus.RESPONDED.value, AlertStatus.RESOLVED.value, AlertStatus.CANCELLED.value}
    ),
    AlertStatus.RESPONDED.value: frozenset(
        {AlertStatus.ACTIVE.value, AlertStatus.RESOLVED.value, AlertStatus.CANCELLED.value}
    ),
}


def normalize(status: str) -> str:
    """Fold legacy values into their current equivalent."""
    if status == AlertStatus.FALSE_ALARM.value:
        return AlertStatus.CANCELLED.value
    return status


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    current = normalize(current)
    if current == target:
        return not is_terminal(current)
    return target in _ALLOWED.get(current, frozenset())


def require_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(normalize(current), target)


def status_after_commit(current: str) -> str:
    """First commitment moves active to responded; anything else is unchanged."""
    if current == AlertStatus.ACTIVE.value:
        return AlertStatus.RESPONDED.value
    return current


def status_after_abandon(current: str, remaining: int, policy: AbandonmentPolicy) -> str:
    """Status once a cancellation leaves `remaining` live responses."""
    if remaining > 0 or is_terminal(current):
        return current
    if policy is AbandonmentPolicy.CANCEL:
        return AlertStatus.CANCELLED.value
    if current == AlertStatus.RESPONDED.value:
        return AlertStatus.ACTIVE.value
    return current
