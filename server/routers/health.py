"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Room and player counts for monitoring
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from game import GamePhase

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None
_session_recovery = None


def set_health_dependencies(room_manager=None, session_recovery=None):
    """Set dependencies for health checks."""
    global _room_manager, _session_recovery
    _room_manager = room_manager
    _session_recovery = session_recovery


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - is the room registry wired up?

    Returns 503 until the server has finished starting.
    """
    ready = _room_manager is not None and _session_recovery is not None
    return JSONResponse(
        content={
            "status": "ok" if ready else "starting",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status_code=200 if ready else 503,
    )


@router.get("/metrics")
async def metrics():
    """Room/game counts useful for dashboards and alerting."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        rooms = _room_manager.rooms.values()
        metrics_data.update({
            "active_rooms": len(_room_manager.rooms),
            "total_players": sum(len(r.players) for r in rooms),
            "disconnected_players": sum(
                1 for r in rooms for p in r.game.players if not p.connected
            ),
            "games_in_progress": sum(
                1 for r in rooms if r.game.phase == GamePhase.IN_PROGRESS
            ),
            "live_connections": len(_room_manager.connections),
        })

    return metrics_data
