"""
Очередь случайного подбора соперника (in-memory, строгий FIFO).
"""
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class WaitingEntry:
    user_id: str
    username: str
    connection: Any


class MatchmakingQueue:
    def __init__(self):
        self._entries: list[WaitingEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: str) -> bool:
        return any(e.user_id == user_id for e in self._entries)

    def position(self, user_id: str) -> int | None:
        """Позиция в очереди, начиная с 1."""
        for i, e in enumerate(self._entries):
            if e.user_id == user_id:
                return i + 1
        return None

    def enqueue(self, user_id: str, username: str, connection: Any) -> int | None:
        """
        Поставить в очередь. Возвращает позицию (с 1) или None,
        если пользователь уже ждёт (повторный вызов ничего не меняет).
        """
        if user_id in self:
            logger.info("Queue: %s already queued", user_id)
            return None
        self._entries.append(WaitingEntry(user_id=user_id, username=username, connection=connection))
        logger.info("Queue: %s joined, size=%d", user_id, len(self._entries))
        return len(self._entries)

    def dequeue_pair(self) -> tuple[WaitingEntry, WaitingEntry] | None:
        """Два самых старых ожидающих, если их хотя бы двое."""
        if len(self._entries) < 2:
            return None
        first = self._entries.pop(0)
        second = self._entries.pop(0)
        return first, second

    def remove(self, user_id: str) -> bool:
        """Убрать из очереди. Возвращает True если был в очереди."""
        for i, e in enumerate(self._entries):
            if e.user_id == user_id:
                self._entries.pop(i)
                logger.info("Queue: %s left, size=%d", user_id, len(self._entries))
                return True
        return False

    def remove_connection(self, connection: Any) -> bool:
        """Убрать запись, привязанную к соединению (при разрыве)."""
        for i, e in enumerate(self._entries):
            if e.connection is connection:
                self._entries.pop(i)
                logger.info("Queue: %s dropped on disconnect, size=%d", e.user_id, len(self._entries))
                return True
        return False
