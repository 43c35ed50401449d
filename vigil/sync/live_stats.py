"""Live responder statistics."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from vigil.db.change_feed import ChangeFeed
from vigil.sync.reconciler import ReconcilingFeed
from vigil.sync.sources import SnapshotSource
from vigil.sync.state import StatsFeedState, StatsSnapshot, SyncWindows


class LiveStatsFeed(ReconcilingFeed):
    purpose = "stats"
    tables = ("alerts", "responses")

    def __init__(
        self,
        feed: ChangeFeed,
        source: SnapshotSource,
        windows: SyncWindows | None = None,
        viewer: str = "anon",
    ) -> None:
        super().__init__(feed, windows, viewer=viewer)
        self.source = source
        self.state = StatsFeedState()

    @property
    def stats(self) -> StatsSnapshot:
        return self.state.stats

    async def _fetch(self) -> StatsSnapshot:
        return await self.source.fetch_stats()

    def _apply(self, snapshot: StatsSnapshot) -> None:
        self.state = StatsFeedState(
            stats=snapshot,
            last_fetch_at=datetime.now(timezone.utc),
            error=None,
            loading=False,
        )

    def _on_fetch_error(self, exc: Exception) -> None:
        self.state = replace(self.state, error=str(exc) or type(exc).__name__, loading=False)
