"""Alert/response policy constants."""

from __future__ import annotations

import enum

from vigil.core.config import AbandonmentPolicy, settings


class AlertStatus(str, enum.Enum):
    ACTIVE = "active"
    RESPONDED = "responded"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    FALSE_ALARM = "false_alarm"  # legacy, read as CANCELLED


class ResponseStatus(str, enum.Enum):
    COMMITTED = "committed"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    COMPLETED = "completed"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EMERGENCY = "emergency"


# Alerts shown on the live board
LIVE_ALERT_STATUSES = (AlertStatus.ACTIVE.value, AlertStatus.RESPONDED.value)

# Responses counted in alert.responder_count
LIVE_RESPONSE_STATUSES = (
    ResponseStatus.COMMITTED.value,
    ResponseStatus.EN_ROUTE.value,
    ResponseStatus.ARRIVED.value,
)

# Forward-only order for responder progress updates
RESPONSE_PROGRESS = (
    ResponseStatus.COMMITTED.value,
    ResponseStatus.EN_ROUTE.value,
    ResponseStatus.ARRIVED.value,
)

DEFAULT_CANCELLATION_REASON = "No reason provided"


def current_abandonment_policy() -> AbandonmentPolicy:
    return settings.abandonment_policy
