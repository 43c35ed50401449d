"""Live alert board plus the viewer's own commitments."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from vigil.core.errors import NotAuthenticatedError
from vigil.core.policies import ResponseStatus
from vigil.db.change_feed import ChangeFeed
from vigil.models.response import Response
from vigil.services.commitment import (
    CancellationReason,
    CancelOutcome,
    CommitmentCoordinator,
    CommitResult,
    ResponseOutcome,
)
from vigil.sync.reconciler import ReconcilingFeed
from vigil.sync.sources import SnapshotSource
from vigil.sync.state import AlertFeedState, AlertSnapshot, SyncWindows

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LiveAlertFeed(ReconcilingFeed):
    """Non-terminal alerts and the viewer's commitment map, kept eventually consistent.

    Writes go through the coordinator; a successful write updates the
    commitment map at once and schedules the post-write refetches.
    """

    purpose = "alerts"
    tables = ("alerts", "responses")

    def __init__(
        self,
        feed: ChangeFeed,
        source: SnapshotSource,
        coordinator: CommitmentCoordinator | None = None,
        responder_id: uuid.UUID | None = None,
        windows: SyncWindows | None = None,
    ) -> None:
        super().__init__(feed, windows, viewer=str(responder_id) if responder_id else "anon")
        self.source = source
        self.coordinator = coordinator
        self.responder_id = responder_id
        self.state = AlertFeedState()
        self._write_lock = asyncio.Lock()

    @property
    def alerts(self) -> tuple[AlertSnapshot, ...]:
        return self.state.alerts

    async def _fetch(self) -> tuple[list[AlertSnapshot], dict[uuid.UUID, str]]:
        alerts = await self.source.fetch_alerts()
        commitments: dict[uuid.UUID, str] = {}
        if self.responder_id is not None:
            commitments = await self.source.fetch_commitments(self.responder_id)
        return alerts, commitments

    def _apply(self, snapshot: tuple[list[AlertSnapshot], dict[uuid.UUID, str]]) -> None:
        alerts, commitments = snapshot
        self.state = AlertFeedState(
            alerts=tuple(alerts),
            commitments=commitments,
            last_fetch_at=datetime.now(timezone.utc),
            error=None,
            loading=False,
        )

    def _on_fetch_error(self, exc: Exception) -> None:
        self.state = replace(self.state, error=str(exc) or type(exc).__name__, loading=False)

    async def manual_refresh(self) -> None:
        self.state = replace(self.state, loading=True)
        self._notify()
        await self.refresh()

    # ---------- writes ----------

    def _require_writer(self) -> CommitmentCoordinator:
        if self.responder_id is None:
            raise NotAuthenticatedError()
        if self.coordinator is None:
            raise RuntimeError("LiveAlertFeed has no coordinator for writes")
        return self.coordinator

    def _set_commitment(self, alert_id: uuid.UUID, status: str | None) -> None:
        commitments = dict(self.state.commitments)
        if status is None:
            commitments.pop(alert_id, None)
        else:
            commitments[alert_id] = status
        self.state = replace(self.state, commitments=commitments)
        self._notify()

    async def _write(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a coordinator call off-loop. Failures still trigger a resync, then propagate."""
        async with self._write_lock:
            try:
                return await asyncio.to_thread(fn, *args)
            except Exception as exc:
                logger.warning("%s write failed, resyncing: %s", self.channel_name, exc)
                self.schedule_refetches(self.windows.post_write_delays)
                raise

    async def commit(self, alert_id: uuid.UUID) -> CommitResult:
        coordinator = self._require_writer()
        result = await self._write(coordinator.commit, alert_id, self.responder_id)
        if result.created:
            self._set_commitment(alert_id, ResponseStatus.COMMITTED.value)
        self.schedule_refetches(self.windows.post_write_delays)
        return result

    async def cancel(self, alert_id: uuid.UUID, reason: CancellationReason | None = None) -> CancelOutcome:
        coordinator = self._require_writer()
        outcome = await self._write(coordinator.cancel, alert_id, self.responder_id, reason)
        # Either way the viewer is no longer committed
        self._set_commitment(alert_id, None)
        self.schedule_refetches(self.windows.post_write_delays)
        return outcome

    async def end_response(self, alert_id: uuid.UUID, outcome: ResponseOutcome | None = None) -> Response:
        coordinator = self._require_writer()
        response = await self._write(coordinator.end_response, alert_id, self.responder_id, outcome)
        self._set_commitment(alert_id, None)
        self.schedule_refetches(self.windows.post_write_delays)
        return response

    async def advance(self, alert_id: uuid.UUID, status: str) -> Response:
        coordinator = self._require_writer()
        response = await self._write(coordinator.advance_response, alert_id, self.responder_id, status)
        self._set_commitment(alert_id, status)
        self.schedule_refetches(self.windows.post_write_delays)
        return response
