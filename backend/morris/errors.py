"""
Ошибки игрового ядра.
Все наследники GameError уходят клиенту одним событием error{message}.
"""


class GameError(Exception):
    message = "Request failed"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class NotAuthenticated(GameError):
    message = "Not authenticated"


class RoomNotFound(GameError):
    message = "Room not found"


class RoomFull(GameError):
    message = "Room is full"


class IllegalMove(GameError):
    message = "Illegal move"


class InvalidPayload(GameError):
    message = "Invalid payload"


class PersistenceFailure(Exception):
    """Ошибка записи в хранилище. Логируется, в игру не пробрасывается."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause!r}")


class AlreadyInRoom(GameError):
    message = "Already in a room"


class AlreadyQueued(GameError):
    message = "Already in matchmaking"
