"""Health check endpoint."""

from fastapi import APIRouter

from vigil.db.change_feed import change_feed

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    """Return API health status and whether the change feed is up."""
    return {"status": "ok", "change_feed": "up" if change_feed.available else "down"}
