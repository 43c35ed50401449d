"""Consumer-visible read models of the live synchronization layer."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from vigil.core.config import settings


class ConnectionStatus(str, enum.Enum):
    """Whether the view can be trusted as live."""

    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class SyncWindows:
    """Reconciliation timing, in seconds."""

    stagger_delays: tuple[float, ...] = (0.4, 1.0)
    fallback_interval: float = 5.0
    subscribe_grace: float = 3.0
    post_write_delays: tuple[float, ...] = (0.2, 0.5, 1.0, 2.0)

    @classmethod
    def from_settings(cls) -> SyncWindows:
        return cls(
            stagger_delays=tuple(settings.sync_stagger_delays),
            fallback_interval=settings.sync_fallback_interval,
            subscribe_grace=settings.sync_subscribe_grace,
            post_write_delays=tuple(settings.sync_post_write_delays),
        )


@dataclass(frozen=True)
class AlertSnapshot:
    id: uuid.UUID
    session_id: uuid.UUID | None
    status: str
    general_location: str
    precise_location: str
    responder_count: int
    created_at: datetime
    updated_at: datetime
    user_id: uuid.UUID | None = None
    anonymous_id: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> AlertSnapshot:
        return cls(
            id=row.id,
            session_id=row.session_id,
            status=row.status,
            general_location=row.general_location,
            precise_location=row.precise_location,
            responder_count=row.responder_count,
            created_at=row.created_at,
            updated_at=row.updated_at,
            user_id=row.user_id,
            anonymous_id=row.anonymous_id,
        )


@dataclass(frozen=True)
class StatsSnapshot:
    active_responders: int = 0
    committed_responders: int = 0
    alert_commitments: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatsSnapshot:
        commitments = {str(k): int(v) for k, v in (data.get("alert_commitments") or {}).items()}
        return cls(
            active_responders=int(data.get("active_responders") or 0),
            committed_responders=int(data.get("committed_responders") or 0),
            alert_commitments=commitments,
        )


@dataclass(frozen=True)
class AlertFeedState:
    alerts: tuple[AlertSnapshot, ...] = ()
    commitments: dict[uuid.UUID, str] = field(default_factory=dict)
    last_fetch_at: datetime | None = None
    error: str | None = None
    loading: bool = True

    def is_committed(self, alert_id: uuid.UUID) -> bool:
        return alert_id in self.commitments


@dataclass(frozen=True)
class StatsFeedState:
    stats: StatsSnapshot = field(default_factory=StatsSnapshot)
    last_fetch_at: datetime | None = None
    error: str | None = None
    loading: bool = True
