"""Push + poll reconciliation shared by the live feeds.

A feed subscribes to the change feed on a channel of its own and treats every
notification as a hint: it refetches the full snapshot right away and again
after the stagger delays, to get past read-after-write lag. Until the channel
confirms, or once it errors or closes, the feed also polls on a fixed
interval. Fetched snapshots replace state wholesale.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from vigil.db.change_feed import ChangeEvent, ChangeFeed, Channel, SubscriptionStatus
from vigil.sync.scheduler import TimerSet
from vigil.sync.state import ConnectionStatus, SyncWindows

logger = logging.getLogger(__name__)

Listener = Callable[["ReconcilingFeed"], None]


class ReconcilingFeed:
    """Base class: subclasses set `purpose`/`tables` and implement `_fetch`/`_apply`."""

    purpose = "feed"
    tables: tuple[str, ...] = ()

    def __init__(
        self,
        feed: ChangeFeed,
        windows: SyncWindows | None = None,
        viewer: str = "anon",
    ) -> None:
        self.feed = feed
        self.windows = windows or SyncWindows.from_settings()
        self.viewer = viewer
        self.timers = TimerSet()
        self.channel_name: str | None = None
        self.subscription_status: SubscriptionStatus | None = None
        self.mounted = False
        self._channel: Channel | None = None
        self._fallback = None
        self._last_fetch_ok = False
        self._inflight = 0
        self._fetch_seq = 0
        self._applied_seq = 0
        self._listeners: list[Listener] = []

    # ---------- lifecycle ----------

    async def mount(self) -> None:
        """Subscribe, arm the grace timer and run the first fetch."""
        if self.mounted:
            return
        self.mounted = True
        self.channel_name = f"{self.purpose}-{self.viewer}-{uuid.uuid4().hex[:12]}"
        channel = self.feed.channel(self.channel_name)
        for table in self.tables:
            channel.on(table, self._on_change)
        self._channel = channel.subscribe(self._on_status)
        self.timers.call_later(self.windows.subscribe_grace, self._check_grace)
        logger.debug("Mounted %s", self.channel_name)
        await self.refresh()

    def unmount(self) -> None:
        """Synchronous teardown: unsubscribe and cancel every pending timer."""
        if not self.mounted:
            return
        self.mounted = False
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None
        self.timers.cancel_all()
        self._fallback = None
        self._listeners.clear()
        logger.debug("Unmounted %s", self.channel_name)

    async def __aenter__(self) -> ReconcilingFeed:
        await self.mount()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.unmount()

    # ---------- status ----------

    @property
    def status(self) -> ConnectionStatus:
        if self.subscription_status is SubscriptionStatus.SUBSCRIBED and self._last_fetch_ok:
            return ConnectionStatus.CONNECTED
        if self._inflight:
            return ConnectionStatus.RECONNECTING
        return ConnectionStatus.DISCONNECTED

    @property
    def polling(self) -> bool:
        return self._fallback is not None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Called with the feed after every state or status change. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Listener failed on %s", self.channel_name)

    # ---------- push channel ----------

    def _on_status(self, status: SubscriptionStatus) -> None:
        if not self.mounted:
            return
        self.subscription_status = status
        logger.info("%s subscription status: %s", self.channel_name, status.value)
        if status is SubscriptionStatus.SUBSCRIBED:
            self._stop_fallback()
        else:
            self._start_fallback()
        self._notify()

    def _check_grace(self) -> None:
        if self.mounted and self.subscription_status is not SubscriptionStatus.SUBSCRIBED:
            logger.warning("%s not subscribed after %.1fs, polling", self.channel_name, self.windows.subscribe_grace)
            self._start_fallback()

    def _on_change(self, change: ChangeEvent) -> None:
        if not self.mounted:
            return
        logger.debug("%s saw %s %s %s", self.channel_name, change.table, change.operation, change.row_id)
        self.schedule_refetches(self.windows.stagger_delays)

    # ---------- pull channel ----------

    def _start_fallback(self) -> None:
        if self.mounted and self._fallback is None:
            self._fallback = self.timers.every(
                self.windows.fallback_interval, self.refresh, name=f"{self.channel_name}-poll"
            )

    def _stop_fallback(self) -> None:
        if self._fallback is not None:
            self.timers.cancel(self._fallback)
            self._fallback = None

    def schedule_refetches(self, delays: tuple[float, ...]) -> None:
        """Refetch now and once more after each delay."""
        if not self.mounted:
            return
        self.timers.spawn(self.refresh())
        for delay in delays:
            self.timers.call_later(delay, self._spawn_refresh)

    def _spawn_refresh(self) -> None:
        if self.mounted:
            self.timers.spawn(self.refresh())

    async def refresh(self) -> None:
        """Fetch the authoritative snapshot. Failures degrade status, never raise."""
        if not self.mounted:
            return
        self._fetch_seq += 1
        seq = self._fetch_seq
        self._inflight += 1
        self._notify()
        try:
            snapshot = await self._fetch()
        except Exception as exc:
            logger.warning("%s refresh failed: %s", self.channel_name, exc)
            if self.mounted:
                self._last_fetch_ok = False
                self._on_fetch_error(exc)
        else:
            if not self.mounted:
                return
            if seq < self._applied_seq:
                logger.debug("%s dropped stale fetch %s (have %s)", self.channel_name, seq, self._applied_seq)
            else:
                self._applied_seq = seq
                self._apply(snapshot)
            self._last_fetch_ok = True
        finally:
            self._inflight -= 1
            if self.mounted:
                self._notify()

    async def _fetch(self) -> Any:
        raise NotImplementedError

    def _apply(self, snapshot: Any) -> None:
        raise NotImplementedError

    def _on_fetch_error(self, exc: Exception) -> None:
        """Hook for subclasses to surface the error in their state."""
