"""vigil FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vigil.api import alerts, auth, health, sessions, stats, ws
from vigil.core.config import settings
from vigil.core.ws_manager import ws_manager
from vigil.db.change_feed import change_feed

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Relay committed alert/response changes to websocket clients
    ws_manager.forward_changes(change_feed)
    try:
        yield
    finally:
        ws_manager.stop_forwarding()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(auth.admin_router)
app.include_router(sessions.router)
app.include_router(alerts.router)
app.include_router(stats.router)
app.include_router(ws.router)
