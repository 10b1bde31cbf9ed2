import pytest

from morris.constants import WINNING_LINES
from morris.errors import IllegalMove, InvalidPayload
from morris.game import (
    GameState,
    detect_winner,
    is_adjacent,
    parse_state,
    phase_for,
    validate_transition,
)


def board_from(cells: dict[int, str]) -> list:
    board = [None] * 9
    for i, s in cells.items():
        board[i] = s
    return board


def test_empty_board_has_no_winner():
    assert detect_winner([None] * 9) is None


def test_full_board_without_line_has_no_winner():
    board = ["X", "O", "X",
             "X", "O", "O",
             "O", "X", "X"]
    assert detect_winner(board) is None


@pytest.mark.parametrize("line", WINNING_LINES)
@pytest.mark.parametrize("symbol", ["X", "O"])
def test_every_line_wins(line, symbol):
    assert detect_winner(board_from({i: symbol for i in line})) == symbol


def test_mixed_line_does_not_win():
    assert detect_winner(board_from({0: "X", 1: "O", 2: "X"})) is None


def test_first_line_in_fixed_order_wins():
    # Недостижимо при честной игре: две параллельные линии разных символов.
    board = ["O", "O", "O",
             None, None, None,
             "X", "X", "X"]
    assert detect_winner(board) == "O"
    board = ["X", None, "O",
             "X", None, "O",
             "X", None, "O"]
    assert detect_winner(board) == "X"


def test_adjacency():
    assert is_adjacent(4, 0)
    assert is_adjacent(4, 8)
    assert is_adjacent(0, 1)
    assert is_adjacent(2, 5)
    assert not is_adjacent(0, 2)
    assert not is_adjacent(0, 8)
    assert not is_adjacent(2, 3)
    assert not is_adjacent(4, 4)
    assert all(is_adjacent(4, i) for i in range(9) if i != 4)


def test_phase_for_counts():
    assert phase_for({"X": 3, "O": 2}) == "placement"
    assert phase_for({"X": 3, "O": 3}) == "movement"


def test_parse_state_reads_move_payload():
    state = parse_state({
        "board": board_from({4: "X"}),
        "currentPlayer": "O",
        "gamePhase": "placement",
        "piecesPlaced": {"X": 1, "O": 0},
    })
    assert state.board[4] == "X"
    assert state.current_player == "O"
    assert state.pieces_placed == {"X": 1, "O": 0}


@pytest.mark.parametrize("patch", [
    {"board": [None] * 8},
    {"board": ["Z"] + [None] * 8},
    {"currentPlayer": "Y"},
    {"gamePhase": "endgame"},
    {"piecesPlaced": {"X": "many"}},
])
def test_parse_state_rejects_malformed(patch):
    data = {
        "board": [None] * 9,
        "currentPlayer": "X",
        "gamePhase": "placement",
        "piecesPlaced": {"X": 0, "O": 0},
    }
    data.update(patch)
    with pytest.raises(InvalidPayload):
        parse_state(data)


def placed(old: GameState, cell: int, mover: str) -> GameState:
    board = list(old.board)
    board[cell] = mover
    counts = dict(old.pieces_placed)
    counts[mover] += 1
    return GameState(board=board, current_player="O" if mover == "X" else "X",
                     phase=phase_for(counts), pieces_placed=counts)


def test_valid_placement_passes():
    old = GameState()
    validate_transition(old, placed(old, 4, "X"), "X")


def test_placement_out_of_turn_rejected():
    old = GameState()
    with pytest.raises(IllegalMove):
        validate_transition(old, placed(old, 4, "O"), "O")


def test_placement_on_occupied_cell_rejected():
    old = GameState(board=board_from({4: "X"}), current_player="O",
                    pieces_placed={"X": 1, "O": 0})
    new = GameState(board=board_from({4: "O"}), current_player="X",
                    pieces_placed={"X": 1, "O": 1})
    with pytest.raises(IllegalMove):
        validate_transition(old, new, "O")


def test_placement_with_wrong_counts_rejected():
    old = GameState()
    new = placed(old, 4, "X")
    new.pieces_placed["X"] = 3
    with pytest.raises(IllegalMove):
        validate_transition(old, new, "X")


def movement_state() -> GameState:
    return GameState(
        board=board_from({0: "X", 1: "O", 3: "O", 5: "X", 7: "O", 8: "X"}),
        current_player="X",
        phase="movement",
        pieces_placed={"X": 3, "O": 3},
    )


def test_adjacent_move_passes():
    old = movement_state()
    new = GameState(
        board=board_from({4: "X", 1: "O", 3: "O", 5: "X", 7: "O", 8: "X"}),
        current_player="O",
        phase="movement",
        pieces_placed={"X": 3, "O": 3},
    )
    validate_transition(old, new, "X")


def test_non_adjacent_move_rejected():
    old = movement_state()
    new = GameState(
        board=board_from({6: "X", 1: "O", 3: "O", 5: "X", 7: "O", 0: None, 8: "X"}),
        current_player="O",
        phase="movement",
        pieces_placed={"X": 3, "O": 3},
    )
    with pytest.raises(IllegalMove):
        validate_transition(old, new, "X")


def test_moving_opponent_piece_rejected():
    old = movement_state()
    new = GameState(
        board=board_from({0: "X", 4: "O", 3: "O", 5: "X", 7: "O", 8: "X"}),
        current_player="O",
        phase="movement",
        pieces_placed={"X": 3, "O": 3},
    )
    with pytest.raises(IllegalMove):
        validate_transition(old, new, "X")


def test_phase_cannot_go_back_to_placement():
    old = movement_state()
    new = GameState(
        board=board_from({4: "X", 1: "O", 3: "O", 5: "X", 7: "O", 8: "X"}),
        current_player="O",
        phase="placement",
        pieces_placed={"X": 3, "O": 3},
    )
    with pytest.raises(IllegalMove):
        validate_transition(old, new, "X")
