"""Константы игры: символы, фазы, статусы комнат и выигрышные линии."""
import string
from typing import Literal

Symbol = Literal["X", "O"]
Phase = Literal["placement", "movement"]
RoomStatus = Literal["waiting", "active", "finished", "abandoned"]

SYMBOLS: tuple[str, str] = ("X", "O")
PHASES: tuple[str, str] = ("placement", "movement")

PLAYER1 = "player1"
PLAYER2 = "player2"

BOARD_SIZE = 9
PIECES_PER_PLAYER = 3
MAX_SEATS = 2

ROOM_ID_LENGTH = 6
ROOM_ID_ALPHABET = string.ascii_uppercase + string.digits

# Порядок фиксирован: строки, столбцы, диагонали.
WINNING_LINES: list[tuple[int, int, int]] = [
    (0, 1, 2), (3, 4, 5), (6, 7, 8),
    (0, 3, 6), (1, 4, 7), (2, 5, 8),
    (0, 4, 8), (2, 4, 6),
]

AVATAR_URL_TEMPLATE = "https://api.dicebear.com/9.x/notionists/svg?seed={seed}"


def opponent_of(symbol: str) -> str:
    return "O" if symbol == "X" else "X"
