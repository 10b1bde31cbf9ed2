"""
Общие фикстуры: временная база SQLite и фейковые WebSocket-соединения.
"""
import asyncio
import itertools

import pytest

from morris.server import GameServer
from morris.storage import SqliteStore


class FakeSocket:
    """Минимальная замена WebSocket: копит отправленные сообщения."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)

    def of_type(self, event: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == event]

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


def sequential_ids(*ids: str):
    """Фабрика id комнат, выдающая заданные значения по порядку."""
    it = itertools.chain(ids, (f"R{n:05d}" for n in itertools.count()))
    return lambda: next(it)


@pytest.fixture
def store(tmp_path):
    return SqliteStore(str(tmp_path / "test.db"))


@pytest.fixture
def make_server(store):
    def _make(**kwargs) -> GameServer:
        return GameServer(store, **kwargs)
    return _make


@pytest.fixture
def run():
    def _run(coro):
        return asyncio.run(coro)
    return _run


def add_user(store: SqliteStore, firebase_uid: str, name: str) -> str:
    return store.login(firebase_uid, f"{firebase_uid}@example.com", name, None)["userId"]
