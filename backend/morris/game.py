"""
Логика партии «три в ряд с передвижением» на поле 3×3.
Этап 1: фаза расстановки (по 3 фишки), затем фаза передвижения на соседнюю клетку.
"""
from dataclasses import dataclass, field
from typing import Any

from .constants import (
    BOARD_SIZE,
    PHASES,
    PIECES_PER_PLAYER,
    SYMBOLS,
    WINNING_LINES,
    opponent_of,
)
from .errors import IllegalMove, InvalidPayload


def _empty_board() -> list[str | None]:
    return [None] * BOARD_SIZE


def _zero_counts() -> dict[str, int]:
    return {s: 0 for s in SYMBOLS}


@dataclass
class GameState:
    board: list[str | None] = field(default_factory=_empty_board)
    current_player: str = "X"
    phase: str = "placement"
    pieces_placed: dict[str, int] = field(default_factory=_zero_counts)

    def to_payload(self) -> dict[str, Any]:
        return {
            "board": list(self.board),
            "currentPlayer": self.current_player,
            "gamePhase": self.phase,
            "piecesPlaced": dict(self.pieces_placed),
        }


def detect_winner(board: list[str | None]) -> str | None:
    """Символ первой заполненной линии (строки, столбцы, диагонали) или None."""
    for a, b, c in WINNING_LINES:
        if board[a] and board[a] == board[b] == board[c]:
            return board[a]
    return None


def is_adjacent(src: int, dst: int) -> bool:
    """Соседство по 8 направлениям, включая диагонали."""
    row_diff = abs(src // 3 - dst // 3)
    col_diff = abs(src % 3 - dst % 3)
    return row_diff <= 1 and col_diff <= 1 and (row_diff + col_diff) > 0


def phase_for(pieces_placed: dict[str, int]) -> str:
    if all(pieces_placed.get(s, 0) >= PIECES_PER_PLAYER for s in SYMBOLS):
        return "movement"
    return "placement"


def parse_state(data: dict[str, Any]) -> GameState:
    """
    Собрать GameState из полей makeMove.
    Проверяется только форма данных, а не легальность хода.
    """
    board = data.get("board")
    if not isinstance(board, list) or len(board) != BOARD_SIZE:
        raise InvalidPayload("Board must have 9 cells")
    if any(cell is not None and cell not in SYMBOLS for cell in board):
        raise InvalidPayload("Board cells must be X, O or null")
    current_player = data.get("currentPlayer")
    if current_player not in SYMBOLS:
        raise InvalidPayload("Unknown currentPlayer")
    phase = data.get("gamePhase")
    if phase not in PHASES:
        raise InvalidPayload("Unknown gamePhase")
    raw_counts = data.get("piecesPlaced") or {}
    try:
        counts = {s: int(raw_counts.get(s, 0)) for s in SYMBOLS}
    except (TypeError, ValueError, AttributeError):
        raise InvalidPayload("piecesPlaced must map X/O to integers")
    return GameState(
        board=list(board),
        current_player=current_player,
        phase=phase,
        pieces_placed=counts,
    )


def validate_transition(old: GameState, new: GameState, mover: str) -> None:
    """
    Серверная проверка хода (строгий режим).
    Бросает IllegalMove, если new не получается из old одним ходом mover.
    """
    if old.current_player != mover:
        raise IllegalMove("Not your turn")
    if new.current_player != opponent_of(mover):
        raise IllegalMove("Turn must pass to the opponent")
    changed = [i for i in range(BOARD_SIZE) if old.board[i] != new.board[i]]

    if old.phase == "placement":
        if len(changed) != 1:
            raise IllegalMove("Placement must fill exactly one cell")
        cell = changed[0]
        if old.board[cell] is not None or new.board[cell] != mover:
            raise IllegalMove("Placement must go to an empty cell")
        if old.pieces_placed[mover] >= PIECES_PER_PLAYER:
            raise IllegalMove("All pieces already placed")
        expected = dict(old.pieces_placed)
        expected[mover] += 1
    else:
        if len(changed) != 2:
            raise IllegalMove("Movement must relocate exactly one piece")
        src = next((i for i in changed if old.board[i] == mover), None)
        dst = next((i for i in changed if i != src), None)
        if src is None or dst is None or new.board[src] is not None:
            raise IllegalMove("Movement must start from an own piece")
        if old.board[dst] is not None or new.board[dst] != mover:
            raise IllegalMove("Movement must end on an empty cell")
        if not is_adjacent(src, dst):
            raise IllegalMove("Cells are not adjacent")
        expected = dict(old.pieces_placed)

    if new.pieces_placed != expected:
        raise IllegalMove("Piece counts do not match the board")
    if new.phase != phase_for(expected):
        raise IllegalMove("Game phase does not match piece counts")
