"""
Живые комнаты (in-memory) и применение ходов.
Запись в хранилище идёт через PersistenceGateway без ожидания результата.
"""
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .constants import (
    MAX_SEATS,
    PLAYER1,
    PLAYER2,
    ROOM_ID_ALPHABET,
    ROOM_ID_LENGTH,
    opponent_of,
)
from .errors import IllegalMove, RoomFull, RoomNotFound
from .game import GameState, detect_winner, validate_transition
from .storage import PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass
class Seat:
    connection: Any
    user_id: str
    username: str
    player_id: str = PLAYER1
    symbol: str = "X"


@dataclass
class Room:
    id: str
    status: str = "waiting"
    seats: list[Seat] = field(default_factory=list)
    state: GameState = field(default_factory=GameState)
    move_count: int = 0
    winner: str | None = None
    created_at: float = field(default_factory=time.time)

    def seat_for(self, connection: Any) -> Seat | None:
        for s in self.seats:
            if s.connection is connection:
                return s
        return None

    def other_seat(self, seat: Seat) -> Seat | None:
        for s in self.seats:
            if s is not seat:
                return s
        return None

    def summary(self) -> dict[str, Any]:
        return {
            "roomId": self.id,
            "players": len(self.seats),
            "gamePhase": self.state.phase,
            "moveCount": self.move_count,
            "status": self.status,
        }


@dataclass
class MoveResult:
    room: Room
    move_number: int
    mover: str
    winner: str | None = None
    finished: bool = False


def generate_room_id(rng: random.Random | None = None) -> str:
    rng = rng or random
    return "".join(rng.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


def normalize_room_id(room_id: Any) -> str:
    return str(room_id or "").strip().upper()


class RoomRegistry:
    def __init__(
        self,
        gateway: PersistenceGateway,
        id_factory: Callable[[], str] = generate_room_id,
        validate_moves: bool = False,
    ):
        self._rooms: dict[str, Room] = {}
        self._gateway = gateway
        self._id_factory = id_factory
        self.validate_moves = validate_moves

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return normalize_room_id(room_id) in self._rooms

    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(normalize_room_id(room_id))

    def _new_id(self) -> str:
        while True:
            room_id = self._id_factory()
            if room_id not in self._rooms:
                return room_id
            logger.info("Room id collision on %s, regenerating", room_id)

    def _persist_seat(self, room: Room, seat: Seat) -> None:
        self._gateway.save_player(
            room.id, seat.user_id, seat.connection.id, seat.player_id, seat.symbol
        )

    def create_room(self, owner: Seat) -> Room:
        owner.player_id, owner.symbol = PLAYER1, "X"
        room = Room(id=self._new_id(), seats=[owner])
        self._rooms[room.id] = room
        self._gateway.save_room(room.id, "waiting", owner.user_id)
        self._persist_seat(room, owner)
        logger.info("Room %s created by %s", room.id, owner.user_id)
        return room

    def create_matched_room(self, first: Seat, second: Seat) -> Room:
        first.player_id, first.symbol = PLAYER1, "X"
        second.player_id, second.symbol = PLAYER2, "O"
        room = Room(id=self._new_id(), status="active", seats=[first, second])
        self._rooms[room.id] = room
        self._gateway.save_room(room.id, "active", first.user_id)
        self._persist_seat(room, first)
        self._persist_seat(room, second)
        self._gateway.update_room_status(room.id, "active")
        logger.info("Matched room %s: %s vs %s", room.id, first.user_id, second.user_id)
        return room

    def room_for(self, connection: Any) -> Room | None:
        for room in self._rooms.values():
            if room.seat_for(connection) is not None:
                return room
        return None

    def check_joinable(self, room_id: str) -> Room:
        room = self.get(room_id)
        if room is None:
            raise RoomNotFound()
        if len(room.seats) >= MAX_SEATS:
            raise RoomFull()
        return room

    def join_room(self, room_id: str, joiner: Seat) -> Room:
        room = self.check_joinable(room_id)
        joiner.player_id, joiner.symbol = PLAYER2, "O"
        room.seats.append(joiner)
        room.status = "active"
        self._persist_seat(room, joiner)
        self._gateway.update_room_status(room.id, "active")
        logger.info("User %s joined room %s", joiner.user_id, room.id)
        return room

    def apply_move(self, room_id: str, new_state: GameState, connection: Any = None) -> MoveResult:
        """
        Заменить состояние комнаты присланным клиентом.
        Без validate_moves легальность хода не проверяется (состояние принимается как есть).
        """
        room = self.get(room_id)
        if room is None:
            raise RoomNotFound()

        if self.validate_moves:
            seat = room.seat_for(connection)
            if seat is None:
                raise IllegalMove("You are not seated in this room")
            if room.status != "active":
                raise IllegalMove("Game is not active")
            validate_transition(room.state, new_state, seat.symbol)

        was_finished = room.status == "finished"
        room.state = new_state
        room.move_count += 1
        mover = opponent_of(new_state.current_player)
        self._gateway.save_move(room.id, room.move_count, mover, new_state.board, new_state.phase)

        winner = detect_winner(new_state.board)
        # Итог и статистика фиксируются один раз, при переходе в finished.
        if winner and not was_finished:
            room.status = "finished"
            room.winner = winner
            logger.info("Room %s finished, winner %s", room.id, winner)
            self._gateway.update_room_status(room.id, "finished", winner)
            for seat in room.seats:
                self._gateway.update_user_stats(seat.user_id, seat.symbol == winner)
        return MoveResult(
            room=room,
            move_number=room.move_count,
            mover=mover,
            winner=winner,
            finished=bool(winner) and not was_finished,
        )

    def remove_by_seat(self, connection: Any) -> tuple[Room, Seat | None] | None:
        """
        Снять комнату, где сидит connection. Возвращает (комната, оставшийся соперник) или None.
        """
        for room_id, room in self._rooms.items():
            seat = room.seat_for(connection)
            if seat is None:
                continue
            del self._rooms[room_id]
            room.status = "abandoned"
            self._gateway.update_room_status(room_id, "abandoned")
            logger.info("Room %s abandoned by %s", room_id, seat.user_id)
            return room, room.other_seat(seat)
        return None

    def release_finished(self, connection: Any) -> tuple[Room, Seat | None] | None:
        """
        Убрать из реестра завершённую партию, в которой сидит connection.
        Итог в хранилище не трогается (остаётся finished).
        """
        room = self.room_for(connection)
        if room is None or room.status != "finished":
            return None
        del self._rooms[room.id]
        seat = room.seat_for(connection)
        logger.info("Finished room %s released by %s", room.id, seat.user_id)
        return room, room.other_seat(seat)
