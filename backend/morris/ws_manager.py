"""
Реестр подключений: привязка WebSocket к пользователю и отправка событий.
"""
import logging
import uuid
from typing import Any

logger = logging.getLogger(__name__)


class Connection:
    def __init__(self, ws: Any, connection_id: str | None = None):
        self.ws = ws
        self.id = connection_id or uuid.uuid4().hex
        self.user_id: str | None = None
        self.username: str = ""

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    async def send(self, event: str, **payload: Any) -> bool:
        try:
            await self.ws.send_json({"type": event, **payload})
            return True
        except Exception as e:
            logger.warning("send %s to %s: %s", event, self.id, e)
            return False

    def __repr__(self) -> str:
        return f"Connection({self.id}, user={self.user_id})"


class ConnectionRegistry:
    """
    user_id -> Connection. Личность не проверяется: доверяем тому, что прислал клиент.
    Повторная авторизация того же user_id перезаписывает привязку (последнее подключение побеждает).
    """

    def __init__(self):
        self._by_user: dict[str, Connection] = {}
        self._all: dict[str, Connection] = {}

    def connect(self, ws: Any) -> Connection:
        conn = Connection(ws)
        self._all[conn.id] = conn
        return conn

    def authenticate(self, conn: Connection, user_id: str, username: str) -> None:
        previous = self._by_user.get(user_id)
        if previous is not None and previous is not conn:
            logger.info("User %s rebound from %s to %s", user_id, previous.id, conn.id)
        if conn.user_id and conn.user_id != user_id and self._by_user.get(conn.user_id) is conn:
            del self._by_user[conn.user_id]
        conn.user_id = user_id
        conn.username = username or ""
        self._by_user[user_id] = conn

    def lookup(self, user_id: str) -> Connection | None:
        return self._by_user.get(user_id)

    def forget(self, conn: Connection) -> None:
        self._all.pop(conn.id, None)
        if conn.user_id and self._by_user.get(conn.user_id) is conn:
            del self._by_user[conn.user_id]

    @property
    def user_count(self) -> int:
        return len(self._by_user)

    def __len__(self) -> int:
        return len(self._all)
