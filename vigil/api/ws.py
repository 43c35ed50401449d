"""WebSocket endpoint with JWT auth."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from vigil.core.security import profile_id_from_token
from vigil.core.ws_manager import ws_manager
from vigil.db.session import SessionLocal
from vigil.services.profiles import get_profile

logger = logging.getLogger(__name__)

router = APIRouter()


def _authenticate_ws(token: str) -> uuid.UUID | None:
    """Validate JWT and return the profile id, or None."""
    profile_id = profile_id_from_token(token)
    if profile_id is None:
        return None
    db = SessionLocal()
    try:
        profile = get_profile(db, profile_id)
        if not profile or not profile.is_active:
            return None
        return profile.id
    finally:
        db.close()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint. Client connects with ?token=<jwt>.
    Server pushes change events: alerts.insert|update|delete, responses.insert|update|delete
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    profile_id = _authenticate_ws(token)
    if profile_id is None:
        await websocket.close(code=4003, reason="Invalid or expired token")
        return

    await ws_manager.connect(websocket, profile_id)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"event":"pong"}')
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket, profile_id)
