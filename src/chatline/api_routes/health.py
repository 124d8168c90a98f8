"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from chatline import api_state as state

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    """Liveness plus a count of live real-time connections."""
    connections = (
        state.get_components().hub.connection_count if state.is_initialized() else 0
    )
    return {
        "status": "healthy" if state.is_initialized() else "starting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "connections": connections,
    }
