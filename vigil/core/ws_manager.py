"""WebSocket connection manager: pushes change-feed events to connected clients."""

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import WebSocket

from vigil.db.change_feed import ChangeEvent, ChangeFeed, Channel

logger = logging.getLogger(__name__)

# Fine location and anonymous ids never leave through the broadcast
_REDACTED_FIELDS = frozenset({"precise_location", "location_precise", "anonymous_id", "hashed_password"})

FORWARDED_TABLES = ("alerts", "responses")


class ConnectionManager:
    """Tracks active WebSocket connections keyed by profile id."""

    def __init__(self) -> None:
        self._connections: dict[uuid.UUID, set[WebSocket]] = {}
        self._channel: Channel | None = None

    async def connect(self, websocket: WebSocket, profile_id: uuid.UUID) -> None:
        await websocket.accept()
        self._connections.setdefault(profile_id, set()).add(websocket)
        logger.info("WS connected: profile=%s (total=%s)", profile_id, self.total_connections)

    def disconnect(self, websocket: WebSocket, profile_id: uuid.UUID) -> None:
        conns = self._connections.get(profile_id)
        if conns:
            conns.discard(websocket)
            if not conns:
                del self._connections[profile_id]
        logger.info("WS disconnected: profile=%s (total=%s)", profile_id, self.total_connections)

    async def _send(self, conns: set[WebSocket], payload: str) -> None:
        dead: list[WebSocket] = []
        for ws in list(conns):
            try:
                await ws.send_text(payload)
            except Exception:
                dead.append(ws)
        for ws in dead:
            conns.discard(ws)

    async def send_to_profile(self, profile_id: uuid.UUID, event: str, data: Any) -> None:
        payload = json.dumps({"event": event, "data": data}, default=str)
        await self._send(self._connections.get(profile_id, set()), payload)

    async def broadcast(self, event: str, data: Any) -> None:
        """Send event to every connection."""
        payload = json.dumps({"event": event, "data": data}, default=str)
        for conns in list(self._connections.values()):
            await self._send(conns, payload)

    # ---------- change feed forwarding ----------

    def forward_changes(self, feed: ChangeFeed) -> Channel:
        """Subscribe to the feed on the running loop and relay alert/response changes."""
        if self._channel is not None:
            return self._channel
        channel = feed.channel(f"ws-forwarder-server-{uuid.uuid4().hex[:8]}")
        for table in FORWARDED_TABLES:
            channel.on(table, self._relay)
        self._channel = channel.subscribe(
            lambda status: logger.info("WS forwarder channel status: %s", status.value)
        )
        return self._channel

    def stop_forwarding(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None

    def _relay(self, change: ChangeEvent) -> None:
        if not self._connections:
            return
        data = change.to_payload()
        data["record"] = {k: v for k, v in data["record"].items() if k not in _REDACTED_FIELDS}
        event = f"{change.table}.{change.operation.lower()}"
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(self.broadcast(event, data))
        except RuntimeError:
            pass  # no event loop (e.g. in tests)

    @property
    def total_connections(self) -> int:
        return sum(len(c) for c in self._connections.values())


# Singleton instance used across the app
ws_manager = ConnectionManager()
