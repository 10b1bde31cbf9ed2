"""
Обработка сообщений WebSocket: authenticate, createRoom, joinRoom,
joinMatchmaking, leaveMatchmaking, makeMove, а также разрыв соединения.
"""
import json
import logging
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from .errors import AlreadyInRoom, AlreadyQueued, GameError, NotAuthenticated
from .game import parse_state
from .pairing import MatchmakingQueue
from .rooms import Room, RoomRegistry, Seat, normalize_room_id
from .ws_manager import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


class SessionCoordinator:
    """
    Связывает события транспорта с очередью и комнатами.
    Все изменения состояния в памяти делаются до первого await в обработчике,
    поэтому события разных клиентов не перемешиваются.
    """

    def __init__(
        self,
        connections: ConnectionRegistry,
        queue: MatchmakingQueue,
        rooms: RoomRegistry,
    ):
        self.connections = connections
        self.queue = queue
        self.rooms = rooms
        self._handlers = {
            "authenticate": self.on_authenticate,
            "createRoom": self.on_create_room,
            "joinMatchmaking": self.on_join_matchmaking,
            "leaveMatchmaking": self.on_leave_matchmaking,
            "joinRoom": self.on_join_room,
            "makeMove": self.on_make_move,
        }

    async def dispatch(self, conn: Connection, data: dict[str, Any]) -> None:
        t = data.get("type")
        handler = self._handlers.get(t)
        if handler is None:
            logger.warning("WS: unknown message type=%s from %s", t, conn.id)
            return
        logger.info("WS: msg from %s type=%s", conn.user_id or conn.id, t)
        try:
            await handler(conn, data)
        except GameError as e:
            logger.info("WS: %s rejected for %s: %s", t, conn.user_id or conn.id, e.message)
            await conn.send("error", message=e.message)

    @staticmethod
    def _require_auth(conn: Connection) -> None:
        if not conn.authenticated:
            raise NotAuthenticated()

    def _leave_idle(self, conn: Connection, join_room_id: str | None = None, queued_ok: bool = False) -> Seat | None:
        """
        Проверить, что соединение в idle, до любых изменений состояния.
        Место в завершённой партии освобождается; возвращается соперник для playerLeft.
        """
        self._require_auth(conn)
        if not queued_ok and conn.user_id in self.queue:
            raise AlreadyQueued()
        room = self.rooms.room_for(conn)
        if room is not None and room.status != "finished":
            raise AlreadyInRoom()
        if join_room_id is not None:
            self.rooms.check_joinable(join_room_id)
        released = self.rooms.release_finished(conn)
        return released[1] if released else None

    @staticmethod
    async def _notify_left(seat: Seat | None) -> None:
        if seat is not None:
            await seat.connection.send("playerLeft")

    @staticmethod
    def _seat(conn: Connection) -> Seat:
        return Seat(connection=conn, user_id=conn.user_id, username=conn.username)

    async def _broadcast(self, room: Room, event: str, **payload: Any) -> None:
        for seat in room.seats:
            await seat.connection.send(event, **payload)

    async def on_authenticate(self, conn: Connection, data: dict[str, Any]) -> None:
        user_id = data.get("userId")
        if not user_id:
            logger.warning("WS: authenticate without userId from %s", conn.id)
            return
        self.connections.authenticate(conn, str(user_id), data.get("username") or "")
        logger.info("WS: connection %s authenticated as %s", conn.id, user_id)

    async def on_create_room(self, conn: Connection, data: dict[str, Any]) -> None:
        left_behind = self._leave_idle(conn)
        room = self.rooms.create_room(self._seat(conn))
        owner = room.seats[0]
        await self._notify_left(left_behind)
        await conn.send(
            "roomCreated",
            roomId=room.id,
            playerId=owner.player_id,
            playerSymbol=owner.symbol,
        )

    async def on_join_matchmaking(self, conn: Connection, data: dict[str, Any]) -> None:
        left_behind = self._leave_idle(conn, queued_ok=True)
        position = self.queue.enqueue(conn.user_id, conn.username, conn)
        await self._notify_left(left_behind)
        if position is None:
            return
        matched = []
        while (pair := self.queue.dequeue_pair()) is not None:
            seats = [
                Seat(connection=e.connection, user_id=e.user_id, username=e.username)
                for e in pair
            ]
            matched.append(self.rooms.create_matched_room(*seats))
        await conn.send("matchmakingJoined", position=position)
        for room in matched:
            await self._announce_match(room)

    async def _announce_match(self, room: Room) -> None:
        for seat in room.seats:
            await seat.connection.send(
                "matchFound",
                roomId=room.id,
                playerId=seat.player_id,
                playerSymbol=seat.symbol,
                opponent=room.other_seat(seat).username,
            )
        await self._broadcast(room, "gameStart", currentPlayer=room.state.current_player)
        logger.info("Match created. Room: %s", room.id)

    async def on_leave_matchmaking(self, conn: Connection, data: dict[str, Any]) -> None:
        if conn.user_id and self.queue.remove(conn.user_id):
            await conn.send("matchmakingLeft")

    async def on_join_room(self, conn: Connection, data: dict[str, Any]) -> None:
        room_id = normalize_room_id(data.get("roomId"))
        left_behind = self._leave_idle(conn, join_room_id=room_id)
        room = self.rooms.join_room(room_id, self._seat(conn))
        await self._notify_left(left_behind)
        joiner, owner = room.seats[1], room.seats[0]
        await conn.send(
            "roomJoined",
            roomId=room.id,
            playerId=joiner.player_id,
            playerSymbol=joiner.symbol,
            opponent=owner.username,
        )
        await owner.connection.send("opponentJoined", opponent=joiner.username)
        await self._broadcast(room, "gameStart", currentPlayer=room.state.current_player)

    async def on_make_move(self, conn: Connection, data: dict[str, Any]) -> None:
        room = self.rooms.get(data.get("roomId"))
        if room is None:
            logger.info("WS: move for unknown room %s", data.get("roomId"))
            return
        new_state = parse_state(data)
        result = self.rooms.apply_move(room.id, new_state, conn)
        logger.info("Move #%d in room %s by %s (%s)", result.move_number, room.id, conn.user_id, result.mover)
        if result.finished:
            logger.info("Winner in room %s: %s", room.id, result.winner)
        await self._broadcast(
            room,
            "moveMade",
            **new_state.to_payload(),
            animateCell=data.get("animateCell"),
        )

    async def on_disconnect(self, conn: Connection) -> None:
        self.connections.forget(conn)
        self.queue.remove_connection(conn)
        removed = self.rooms.remove_by_seat(conn)
        if removed is None:
            return
        room, remaining = removed
        if remaining is not None:
            await remaining.connection.send("playerLeft")


async def ws_loop(ws: WebSocket, coordinator: SessionCoordinator) -> None:
    """
    Принять соединение и обрабатывать сообщения до разрыва.
    До authenticate соединение анонимно; createRoom, joinRoom и joinMatchmaking отклоняются.
    """
    await ws.accept()
    conn = coordinator.connections.connect(ws)
    logger.info("WS: accepted connection %s from %s", conn.id, ws.client)
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning("WS: invalid JSON from %s: %s", conn.id, e)
                continue
            if not isinstance(data, dict):
                logger.warning("WS: non-object frame from %s", conn.id)
                continue
            await coordinator.dispatch(conn, data)
    except WebSocketDisconnect as e:
        logger.info("WS: client disconnected code=%s user_id=%s", e.code, conn.user_id)
    except Exception as e:
        logger.exception("WS: error user_id=%s: %s", conn.user_id, e)
    finally:
        await coordinator.on_disconnect(conn)
        logger.info("WS: disconnected %s", conn.id)
