"""
Three Men's Morris: API и WebSocket.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .api import router
from .config import get_config
from .server import GameServer
from .storage import SqliteStore
from .ws_handlers import ws_loop

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

config = get_config()


def build_server() -> GameServer:
    return GameServer(
        SqliteStore(config.database_path),
        validate_moves=config.move_validation,
        room_retention_hours=config.room_retention_hours,
        cleanup_interval_seconds=config.cleanup_interval_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    server = getattr(app.state, "game_server", None) or build_server()
    app.state.game_server = server
    await server.start()
    logger.info("Move validation: %s", "strict" if server.rooms.validate_moves else "client-trusted")
    try:
        yield
    finally:
        await server.stop()


app = FastAPI(title="Three Men's Morris API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


@app.get("/health")
def health(request: Request):
    return {
        **request.app.state.game_server.health(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    logger.info("WS: connection attempt from %s", ws.client)
    await ws_loop(ws, ws.app.state.game_server.coordinator)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port)
