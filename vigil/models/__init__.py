"""SQLAlchemy models."""

from __future__ import annotations

from vigil.models.alert import Alert
from vigil.models.monitoring_session import MonitoringSession
from vigil.models.responder_profile import ResponderProfile
from vigil.models.response import Response
from vigil.models.response_cancellation import ResponseCancellation

__all__ = [
    "Alert",
    "MonitoringSession",
    "ResponderProfile",
    "Response",
    "ResponseCancellation",
]
