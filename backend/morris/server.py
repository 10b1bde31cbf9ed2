"""
Состояние процесса: реестры, очередь, шлюз хранилища и координатор.
Один экземпляр на приложение; в тестах можно создавать сколько угодно.
"""
import asyncio
import logging

from .pairing import MatchmakingQueue
from .rooms import RoomRegistry, generate_room_id
from .storage import PersistenceGateway, SqliteStore, now_ms
from .ws_handlers import SessionCoordinator
from .ws_manager import ConnectionRegistry

logger = logging.getLogger(__name__)


class GameServer:
    def __init__(
        self,
        store: SqliteStore,
        validate_moves: bool = False,
        id_factory=generate_room_id,
        room_retention_hours: int = 24,
        cleanup_interval_seconds: int = 3600,
    ):
        self.gateway = PersistenceGateway(store)
        self.connections = ConnectionRegistry()
        self.queue = MatchmakingQueue()
        self.rooms = RoomRegistry(self.gateway, id_factory=id_factory, validate_moves=validate_moves)
        self.coordinator = SessionCoordinator(self.connections, self.queue, self.rooms)
        self.room_retention_hours = room_retention_hours
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._cleanup_task: asyncio.Task | None = None

    async def start(self) -> None:
        self.gateway.start()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="room-retention")
        logger.info("Game server started")

    async def stop(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        await self.gateway.stop()
        logger.info("Game server stopped")

    async def cleanup_old_rooms(self) -> int:
        cutoff = now_ms() - self.room_retention_hours * 60 * 60 * 1000
        removed = await self.gateway.call("cleanup_rooms", cutoff)
        if removed:
            logger.info("Cleaned up %d old rooms from database", removed)
        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                await self.cleanup_old_rooms()
            except Exception as e:
                logger.error("Error cleaning up old rooms: %s", e)

    def health(self) -> dict:
        return {
            "status": "ok",
            "activeRooms": len(self.rooms),
            "matchmakingQueue": len(self.queue),
            "connectedUsers": self.connections.user_count,
        }
