"""Row-level change notifications for the watched tables.

Session events collect inserted/updated/deleted rows during flush and
publish them once the transaction commits. Rolled-back work is discarded.
Delivery is best-effort: a channel that is not confirmed, has failed, or
was unsubscribed simply misses events.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import event, inspect
from sqlalchemy.sql.expression import ClauseElement

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({"alerts", "responses", "monitoring_sessions", "responder_profiles"})

_PENDING_KEY = "vigil_pending_changes"
_DIRTY_KEY = "vigil_dirty_fields"


class SubscriptionStatus(str, enum.Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    operation: str  # INSERT | UPDATE | DELETE
    row_id: str | None
    changed_fields: tuple[str, ...]
    timestamp: datetime
    record: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "operation": self.operation,
            "row_id": self.row_id,
            "changed_fields": list(self.changed_fields),
            "timestamp": self.timestamp.isoformat(),
            "record": self.record,
        }


ChangeHandler = Callable[[ChangeEvent], None]
StatusHandler = Callable[[SubscriptionStatus], None]


class Channel:
    """A named subscription to one or more tables."""

    def __init__(self, feed: ChangeFeed, name: str) -> None:
        self.feed = feed
        self.name = name
        self.status: SubscriptionStatus | None = None
        self._handlers: list[tuple[str, str, ChangeHandler]] = []
        self._status_handler: StatusHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    def on(self, table: str, callback: ChangeHandler, event: str = "*") -> Channel:
        if table not in WATCHED_TABLES:
            raise ValueError(f"Table '{table}' is not watched")
        self._handlers.append((table, event.upper(), callback))
        return self

    def subscribe(self, status_callback: StatusHandler | None = None) -> Channel:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self._status_handler = status_callback
        self.feed._register(self)
        if self.feed.available:
            self._set_status(SubscriptionStatus.SUBSCRIBED)
        else:
            logger.info("Channel %s waiting: change feed unavailable", self.name)
        return self

    def unsubscribe(self) -> None:
        """Detach synchronously. No further callbacks are delivered."""
        self.feed._unregister(self)
        self._closed = True
        self.status = SubscriptionStatus.CLOSED
        self._handlers.clear()
        self._status_handler = None

    @property
    def is_live(self) -> bool:
        return self.status is SubscriptionStatus.SUBSCRIBED

    def _set_status(self, status: SubscriptionStatus) -> None:
        self.status = status
        if self._status_handler is not None:
            self._dispatch(self._status_handler, status)

    def _deliver(self, change: ChangeEvent) -> None:
        if not self.is_live:
            return
        for table, op, callback in list(self._handlers):
            if table == change.table and op in ("*", change.operation):
                self._dispatch(callback, change)

    def _dispatch(self, fn: Callable[[Any], None], arg: Any) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._guarded, fn, arg)
        else:
            self._guarded(fn, arg)

    def _guarded(self, fn: Callable[[Any], None], arg: Any) -> None:
        # Callbacks queued before unsubscribe must not fire after it.
        if self._closed:
            return
        try:
            fn(arg)
        except Exception:
            logger.exception("Change feed callback failed on channel %s", self.name)


class ChangeFeed:
    """In-process change-notification hub fed by SQLAlchemy session events."""

    def __init__(self) -> None:
        self.available = True
        self._channels: dict[str, Channel] = {}
        self._lock = threading.Lock()

    def channel(self, name: str) -> Channel:
        return Channel(self, name)

    @property
    def channel_names(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def _register(self, channel: Channel) -> None:
        with self._lock:
            if channel.name in self._channels:
                raise ValueError(f"Channel '{channel.name}' is already subscribed")
            self._channels[channel.name] = channel

    def _unregister(self, channel: Channel) -> None:
        with self._lock:
            if self._channels.get(channel.name) is channel:
                del self._channels[channel.name]

    def set_available(self, available: bool) -> None:
        """Toggle transport health. Waiting channels confirm on recovery."""
        self.available = available
        with self._lock:
            channels = list(self._channels.values())
        for ch in channels:
            if available and ch.status is None:
                ch._set_status(SubscriptionStatus.SUBSCRIBED)
            elif not available and ch.is_live:
                ch._set_status(SubscriptionStatus.CHANNEL_ERROR)

    def fail_channels(self, status: SubscriptionStatus = SubscriptionStatus.CHANNEL_ERROR) -> None:
        with self._lock:
            channels = list(self._channels.values())
        for ch in channels:
            ch._set_status(status)

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            channels = list(self._channels.values())
        logger.debug("Change %s %s %s -> %s channels", change.table, change.operation, change.row_id, len(channels))
        for ch in channels:
            ch._deliver(change)

    # ---------- session event wiring ----------

    def attach(self, session_factory: Any) -> None:
        """Listen to flush/commit/rollback on a sessionmaker (or Session class)."""
        if event.contains(session_factory, "after_flush", self._collect):
            return
        event.listen(session_factory, "before_flush", self._snapshot_dirty)
        event.listen(session_factory, "after_flush", self._collect)
        event.listen(session_factory, "after_commit", self._flush_pending)
        event.listen(session_factory, "after_rollback", self._discard)

    def _snapshot_dirty(self, session: Any, flush_context: Any, instances: Any) -> None:
        # Expression assignments are expired during flush, so read history first.
        dirty = session.info.setdefault(_DIRTY_KEY, {})
        for obj in session.dirty:
            if not session.is_modified(obj, include_collections=False):
                continue
            state = inspect(obj)
            changed = tuple(attr.key for attr in state.attrs if attr.history.has_changes())
            dirty[state] = tuple(dict.fromkeys(dirty.get(state, ()) + changed))

    def _collect(self, session: Any, flush_context: Any) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        dirty = session.info.pop(_DIRTY_KEY, {})
        now = datetime.now(timezone.utc)
        for obj in session.new:
            change = _describe(obj, "INSERT", now)
            if change:
                pending.append(change)
        for state, changed in dirty.items():
            obj = state.obj()
            if obj is None or obj in session.deleted:
                continue
            change = _describe(obj, "UPDATE", now, changed)
            if change:
                pending.append(change)
        for obj in session.deleted:
            change = _describe(obj, "DELETE", now)
            if change:
                pending.append(change)

    def _flush_pending(self, session: Any) -> None:
        pending = session.info.pop(_PENDING_KEY, [])
        for change in pending:
            self.publish(change)

    def _discard(self, session: Any) -> None:
        session.info.pop(_PENDING_KEY, None)
        session.info.pop(_DIRTY_KEY, None)


def _describe(
    obj: Any,
    operation: str,
    now: datetime,
    changed: tuple[str, ...] | None = None,
) -> ChangeEvent | None:
    table = getattr(obj, "__tablename__", None)
    if table not in WATCHED_TABLES:
        return None
    state = inspect(obj)
    if changed is None:
        changed = tuple(attr.key for attr in state.mapper.column_attrs)
    # Only already-loaded values; expression assignments stay out of the record.
    record = {
        key: value
        for key, value in state.dict.items()
        if not key.startswith("_") and key in state.mapper.column_attrs.keys()
        and not isinstance(value, ClauseElement)
    }
    row_id = record.get("id")
    return ChangeEvent(
        table=table,
        operation=operation,
        row_id=str(row_id) if row_id is not None else None,
        changed_fields=changed,
        timestamp=now,
        record=record,
    )


# Singleton instance used across the app
change_feed = ChangeFeed()
