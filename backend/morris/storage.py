"""
Долговременное хранилище (SQLite) и асинхронный шлюз записи.
Живое состояние партий хранится в памяти; здесь только частичное зеркало:
пользователи, комнаты, места, журнал ходов.
"""
import asyncio
import json
import logging
import sqlite3
import time
import uuid
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class SqliteStore:
    """
    Синхронный репозиторий поверх sqlite3.
    Вызывается из рабочего потока шлюза, поэтому соединение открывается на каждую операцию.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_tables()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Соединение на одну операцию: commit/rollback и закрытие на выходе."""
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    firebase_uid TEXT UNIQUE NOT NULL,
                    email TEXT NOT NULL,
                    username TEXT NOT NULL,
                    photo_url TEXT,
                    created_at INTEGER NOT NULL,
                    last_login INTEGER NOT NULL,
                    games_played INTEGER DEFAULT 0,
                    games_won INTEGER DEFAULT 0,
                    games_lost INTEGER DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS rooms (
                    room_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    created_by_user_id TEXT,
                    created_at INTEGER NOT NULL,
                    started_at INTEGER,
                    ended_at INTEGER,
                    winner TEXT
                );
                CREATE TABLE IF NOT EXISTS players (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    room_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    socket_id TEXT NOT NULL,
                    player_id TEXT NOT NULL,
                    player_symbol TEXT NOT NULL,
                    joined_at INTEGER NOT NULL
                );
                CREATE TABLE IF NOT EXISTS game_moves (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    room_id TEXT NOT NULL,
                    move_number INTEGER NOT NULL,
                    player_symbol TEXT NOT NULL,
                    board_state TEXT NOT NULL,
                    game_phase TEXT NOT NULL,
                    timestamp INTEGER NOT NULL
                );
                """
            )

    @staticmethod
    def _user_to_dict(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "userId": row["user_id"],
            "email": row["email"],
            "username": row["username"],
            "photoUrl": row["photo_url"],
            "gamesPlayed": row["games_played"],
            "gamesWon": row["games_won"],
            "gamesLost": row["games_lost"],
        }

    # --- пользователи ---

    def login(
        self,
        firebase_uid: str,
        email: str,
        display_name: str,
        photo_url: str | None,
    ) -> dict[str, Any]:
        """Найти или создать пользователя; вернуть профиль с флагом needsSetup."""
        now = now_ms()
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE firebase_uid = ?", (firebase_uid,)
            ).fetchone()
            if row:
                conn.execute(
                    "UPDATE users SET last_login = ?, photo_url = COALESCE(?, photo_url) "
                    "WHERE firebase_uid = ?",
                    (now, photo_url, firebase_uid),
                )
                row = conn.execute(
                    "SELECT * FROM users WHERE firebase_uid = ?", (firebase_uid,)
                ).fetchone()
                user = self._user_to_dict(row)
            else:
                user_id = str(uuid.uuid4())
                conn.execute(
                    "INSERT INTO users (user_id, firebase_uid, email, username, photo_url, "
                    "created_at, last_login) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (user_id, firebase_uid, email, display_name, photo_url, now, now),
                )
                user = {
                    "userId": user_id,
                    "email": email,
                    "username": display_name,
                    "photoUrl": photo_url,
                    "gamesPlayed": 0,
                    "gamesWon": 0,
                    "gamesLost": 0,
                }
        user["needsSetup"] = not user["username"] or user["username"] == display_name
        return user

    def get_user_by_firebase_uid(self, firebase_uid: str) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE firebase_uid = ?", (firebase_uid,)
            ).fetchone()
        return self._user_to_dict(row) if row else None

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return self._user_to_dict(row) if row else None

    def update_profile(self, user_id: str, username: str, photo_url: str | None = None) -> bool:
        """Сменить имя (и аватар, если передан). False, если пользователя нет."""
        with self._get_connection() as conn:
            cur = conn.execute(
                "UPDATE users SET username = ?, photo_url = COALESCE(?, photo_url) "
                "WHERE user_id = ?",
                (username, photo_url, user_id),
            )
            return cur.rowcount > 0

    def update_user_stats(self, user_id: str, won: bool) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE users SET games_played = games_played + 1, "
                "games_won = games_won + ?, games_lost = games_lost + ? WHERE user_id = ?",
                (1 if won else 0, 0 if won else 1, user_id),
            )
        logger.info("Stats updated for user %s won=%s", user_id, won)

    def leaderboard(self, limit: int = 100) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT user_id, username, photo_url, games_played, games_won, games_lost,
                       ROUND(CAST(games_won AS FLOAT) / NULLIF(games_played, 0) * 100, 1) AS win_rate
                FROM users
                WHERE games_played > 0
                ORDER BY games_won DESC, win_rate DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]

    # --- комнаты и ходы ---

    def save_room(self, room_id: str, status: str, created_by_user_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO rooms (room_id, status, created_by_user_id, created_at) "
                "VALUES (?, ?, ?, ?)",
                (room_id, status, created_by_user_id, now_ms()),
            )
        logger.info("Room saved: %s", room_id)

    def update_room_status(self, room_id: str, status: str, winner: str | None = None) -> None:
        query = "UPDATE rooms SET status = ?"
        params: list[Any] = [status]
        if winner:
            query += ", winner = ?, ended_at = ?"
            params += [winner, now_ms()]
        elif status == "active":
            query += ", started_at = ?"
            params.append(now_ms())
        query += " WHERE room_id = ?"
        params.append(room_id)
        with self._get_connection() as conn:
            conn.execute(query, params)
        logger.info("Room status updated: %s -> %s", room_id, status)

    def save_player(
        self,
        room_id: str,
        user_id: str,
        socket_id: str,
        player_id: str,
        player_symbol: str,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO players (room_id, user_id, socket_id, player_id, player_symbol, "
                "joined_at) VALUES (?, ?, ?, ?, ?, ?)",
                (room_id, user_id, socket_id, player_id, player_symbol, now_ms()),
            )

    def save_move(
        self,
        room_id: str,
        move_number: int,
        player_symbol: str,
        board: list[str | None],
        game_phase: str,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO game_moves (room_id, move_number, player_symbol, board_state, "
                "game_phase, timestamp) VALUES (?, ?, ?, ?, ?, ?)",
                (room_id, move_number, player_symbol, json.dumps(board), game_phase, now_ms()),
            )

    def get_room(self, room_id: str) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM rooms WHERE room_id = ?", (room_id,)).fetchone()
        return dict(row) if row else None

    def get_players(self, room_id: str) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM players WHERE room_id = ? ORDER BY id", (room_id,)
            ).fetchall()
        return [dict(r) for r in rows]

    def room_history(self, room_id: str) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM game_moves WHERE room_id = ? ORDER BY move_number ASC",
                (room_id,),
            ).fetchall()
        moves = []
        for r in rows:
            move = dict(r)
            move["board_state"] = json.loads(move["board_state"])
            moves.append(move)
        return moves

    def game_stats(self) -> dict[str, Any]:
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT
                  COUNT(*) AS total_games,
                  SUM(CASE WHEN status = 'finished' THEN 1 ELSE 0 END) AS completed_games,
                  SUM(CASE WHEN status = 'abandoned' THEN 1 ELSE 0 END) AS abandoned_games,
                  SUM(CASE WHEN winner = 'X' THEN 1 ELSE 0 END) AS x_wins,
                  SUM(CASE WHEN winner = 'O' THEN 1 ELSE 0 END) AS o_wins
                FROM rooms
                """
            ).fetchone()
        return {k: (row[k] or 0) for k in row.keys()}

    def cleanup_rooms(self, older_than_ms: int) -> int:
        """Удалить неактивные комнаты, созданные раньше older_than_ms. Возвращает число удалённых."""
        with self._get_connection() as conn:
            cur = conn.execute(
                "DELETE FROM rooms WHERE created_at < ? AND status != 'active'",
                (older_than_ms,),
            )
            return cur.rowcount


class PersistenceGateway:
    """
    Односторонний канал записи: submit() ставит операцию в очередь и сразу возвращается.
    Один воркер выполняет записи по порядку в отдельном потоке.
    Ошибки логируются и складываются в failures; игровой процесс они не прерывают.
    """

    def __init__(self, store: SqliteStore, max_failures: int = 100) -> None:
        self.store = store
        self.failures: deque[PersistenceFailure] = deque(maxlen=max_failures)
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None

    def _get_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="persistence-worker")

    async def stop(self) -> None:
        await self.drain()
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def drain(self) -> None:
        """Дождаться выполнения всех поставленных записей."""
        if self._queue is not None:
            await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def submit(self, operation: str, *args: Any) -> None:
        fn: Callable[..., Any] = getattr(self.store, operation)
        self._get_queue().put_nowait((operation, fn, args))

    async def _run(self) -> None:
        queue = self._get_queue()
        while True:
            operation, fn, args = await queue.get()
            try:
                await asyncio.to_thread(fn, *args)
            except Exception as e:
                failure = PersistenceFailure(operation, e)
                self.failures.append(failure)
                logger.error("Persistence: %s", failure, exc_info=e)
            finally:
                queue.task_done()

    # --- записи, которые порождает игровое ядро ---

    def save_room(self, room_id: str, status: str, created_by_user_id: str) -> None:
        self.submit("save_room", room_id, status, created_by_user_id)

    def update_room_status(self, room_id: str, status: str, winner: str | None = None) -> None:
        self.submit("update_room_status", room_id, status, winner)

    def save_player(self, room_id: str, user_id: str, socket_id: str, player_id: str, symbol: str) -> None:
        self.submit("save_player", room_id, user_id, socket_id, player_id, symbol)

    def save_move(self, room_id: str, move_number: int, symbol: str, board: list, phase: str) -> None:
        self.submit("save_move", room_id, move_number, symbol, list(board), phase)

    def update_user_stats(self, user_id: str, won: bool) -> None:
        self.submit("update_user_stats", user_id, won)

    # --- синхронные для вызывающего операции (чтения и REST) ---

    async def call(self, operation: str, *args: Any) -> Any:
        return await asyncio.to_thread(getattr(self.store, operation), *args)
