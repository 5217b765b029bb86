"""FastAPI WebSocket server for the Palace card game."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from errors import InvalidPayload
from handlers import ConnectionContext, dispatch, handle_disconnect, remove_player_from_room
from logging_config import setup_logging
from room import Room, RoomManager
from routers.health import router as health_router
from routers.health import set_health_dependencies
from services.session_recovery import SessionRecovery

# Initialize Sentry if configured
if config.SENTRY_DSN:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.starlette import StarletteIntegration

        sentry_sdk.init(
            dsn=config.SENTRY_DSN,
            environment=config.ENVIRONMENT,
            traces_sample_rate=0.1 if config.ENVIRONMENT == "production" else 1.0,
            integrations=[
                StarletteIntegration(transaction_style="endpoint"),
                FastApiIntegration(transaction_style="endpoint"),
            ],
        )
        logging.getLogger(__name__).info("Sentry error tracking initialized")
    except ImportError:
        logging.getLogger(__name__).warning("sentry-sdk not installed, error tracking disabled")

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


room_manager = RoomManager()


async def expire_player(room: Room, player_id: str) -> None:
    """Grace period ran out: the seat is given up."""
    await remove_player_from_room(room, player_id, room_manager=room_manager)


session_recovery = SessionRecovery(
    on_expire=expire_player,
    grace_seconds=config.RECONNECT_GRACE_SECONDS,
)


async def _close_all_websockets():
    """Close all active WebSocket connections gracefully."""
    for room in list(room_manager.rooms.values()):
        for player in room.players.values():
            if player.websocket:
                try:
                    await player.websocket.close(code=1001, reason="Server shutting down")
                except Exception as e:
                    logger.debug(f"Closing socket for {player.id} failed: {e}")
    logger.info("All WebSocket connections closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    set_health_dependencies(
        room_manager=room_manager,
        session_recovery=session_recovery,
    )

    logger.info(f"Palace server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await session_recovery.shutdown()
    await _close_all_websockets()
    room_manager.rooms.clear()
    room_manager.connections.clear()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Palace Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    logger.debug(f"WebSocket connected as {connection_id}")

    ctx = ConnectionContext(
        websocket=websocket,
        connection_id=connection_id,
    )

    # Shared dependencies passed to every handler
    handler_deps = dict(
        room_manager=room_manager,
        session_recovery=session_recovery,
    )

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await websocket.send_json(InvalidPayload("Frames must be JSON objects").to_dict())
                continue
            await dispatch(data, ctx, **handler_deps)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {connection_id} disconnected")
        await handle_disconnect(ctx, **handler_deps)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Palace server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
