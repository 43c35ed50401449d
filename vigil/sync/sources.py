"""Authoritative snapshot reads for the pull channel."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from vigil.core.config import settings
from vigil.core.errors import ProcedureUnavailableError, StoreError
from vigil.core.policies import LIVE_ALERT_STATUSES, LIVE_RESPONSE_STATUSES
from vigil.core.retry import RetryPolicy
from vigil.db.procedures import ProcedureRegistry, procedures
from vigil.db.store import StoreClient
from vigil.models.alert import Alert
from vigil.models.responder_profile import ResponderProfile
from vigil.models.response import Response
from vigil.sync.state import AlertSnapshot, StatsSnapshot

logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    async def fetch_alerts(self) -> list[AlertSnapshot]: ...

    async def fetch_commitments(self, responder_id: uuid.UUID) -> dict[uuid.UUID, str]: ...

    async def fetch_stats(self) -> StatsSnapshot: ...


class StoreSnapshotSource:
    """Reads from the store in a worker thread, one session per fetch."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        retry: RetryPolicy | None = None,
        registry: ProcedureRegistry = procedures,
        online_window_minutes: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.retry = retry or RetryPolicy.from_settings()
        self.registry = registry
        self.online_window_minutes = (
            settings.online_window_minutes if online_window_minutes is None else online_window_minutes
        )

    def _store(self, db: Session) -> StoreClient:
        # Retries happen around the whole fetch, not per statement
        return StoreClient(db, retry=RetryPolicy.none(), registry=self.registry)

    async def fetch_alerts(self) -> list[AlertSnapshot]:
        return await self.retry.acall(lambda: asyncio.to_thread(self._fetch_alerts), label="fetch alerts")

    async def fetch_commitments(self, responder_id: uuid.UUID) -> dict[uuid.UUID, str]:
        return await self.retry.acall(
            lambda: asyncio.to_thread(self._fetch_commitments, responder_id),
            label="fetch commitments",
        )

    async def fetch_stats(self) -> StatsSnapshot:
        return await self.retry.acall(lambda: asyncio.to_thread(self._fetch_stats), label="fetch stats")

    def _fetch_alerts(self) -> list[AlertSnapshot]:
        """Full resync: repair drifted responder counts, then read every live alert."""
        with self.session_factory() as db:
            store = self._store(db)
            try:
                fixed = store.rpc("reconcile_responder_counts")
                if fixed:
                    logger.info("Resync repaired %s alert count(s)", fixed)
            except ProcedureUnavailableError:
                logger.debug("reconcile_responder_counts unavailable, reading counts as stored")
            except StoreError as exc:
                logger.warning("Count repair failed during resync: %s", exc)

            def work(session: Session) -> list[AlertSnapshot]:
                rows = session.execute(
                    select(Alert)
                    .where(Alert.status.in_(LIVE_ALERT_STATUSES))
                    .order_by(Alert.created_at.desc())
                ).scalars().all()
                return [AlertSnapshot.from_row(row) for row in rows]

            return store.run_once(work)

    def _fetch_commitments(self, responder_id: uuid.UUID) -> dict[uuid.UUID, str]:
        with self.session_factory() as db:
            rows = self._store(db).run_once(
                lambda session: session.execute(
                    select(Response.alert_id, Response.status).where(
                        Response.responder_id == responder_id,
                        Response.status.in_(LIVE_RESPONSE_STATUSES),
                    )
                ).all()
            )
            return {alert_id: status for alert_id, status in rows}

    def _fetch_stats(self) -> StatsSnapshot:
        """One server-side aggregate when available; three queries otherwise."""
        with self.session_factory() as db:
            store = self._store(db)
            try:
                data = store.rpc("get_alert_stats", online_window_minutes=self.online_window_minutes)
                return StatsSnapshot.from_dict(data)
            except ProcedureUnavailableError:
                logger.info("get_alert_stats unavailable, aggregating with separate queries")
            return store.run_once(lambda session: aggregate_stats(session, self.online_window_minutes))


def aggregate_stats(db: Session, online_window_minutes: int) -> StatsSnapshot:
    """Stats from three separate queries, for when get_alert_stats is unavailable."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=online_window_minutes)
    active_responders = db.execute(
        select(func.count(ResponderProfile.id)).where(
            ResponderProfile.is_responder.is_(True),
            ResponderProfile.last_seen_at >= cutoff,
        )
    ).scalar_one()

    committed = db.execute(
        select(Response.alert_id, func.count(Response.id))
        .where(Response.status.in_(LIVE_RESPONSE_STATUSES))
        .group_by(Response.alert_id)
    ).all()
    live_alerts = db.execute(
        select(Alert.id, Alert.responder_count).where(Alert.status.in_(LIVE_ALERT_STATUSES))
    ).all()

    live_ids = {alert_id for alert_id, _ in live_alerts}
    alert_commitments = {str(alert_id): count for alert_id, count in committed if alert_id in live_ids}
    # Alerts with no visible responses fall back to their stored count
    for alert_id, stored_count in live_alerts:
        key = str(alert_id)
        if key not in alert_commitments and stored_count > 0:
            alert_commitments[key] = stored_count

    return StatsSnapshot(
        active_responders=active_responders,
        committed_responders=sum(alert_commitments.values()),
        alert_commitments=alert_commitments,
    )
