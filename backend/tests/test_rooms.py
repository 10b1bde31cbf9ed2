import pytest

from morris.errors import IllegalMove, RoomFull, RoomNotFound
from morris.game import GameState
from morris.rooms import RoomRegistry, Seat, generate_room_id
from morris.storage import PersistenceGateway
from morris.ws_manager import Connection

from conftest import FakeSocket, add_user, sequential_ids


def seat(user_id: str, name: str = "") -> Seat:
    return Seat(connection=Connection(FakeSocket()), user_id=user_id, username=name or user_id)


def win_for_x() -> GameState:
    return GameState(
        board=["X", "X", "X", "O", "O", None, None, None, None],
        current_player="O",
        phase="placement",
        pieces_placed={"X": 3, "O": 2},
    )


def test_generated_ids_are_six_uppercase_alphanumerics():
    for _ in range(50):
        room_id = generate_room_id()
        assert len(room_id) == 6
        assert room_id == room_id.upper() and room_id.isalnum()


def test_create_room_yields_distinct_live_ids(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    ids = {rooms.create_room(seat(f"u{i}")).id for i in range(30)}
    assert len(ids) == 30
    assert all(room_id in rooms for room_id in ids)


def test_colliding_id_is_regenerated(store):
    rooms = RoomRegistry(PersistenceGateway(store), id_factory=sequential_ids("AAAAAA", "AAAAAA", "BBBBBB"))
    assert rooms.create_room(seat("u1")).id == "AAAAAA"
    assert rooms.create_room(seat("u2")).id == "BBBBBB"


def test_owner_seats_as_x_player1(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    room = rooms.create_room(seat("u1"))
    assert room.status == "waiting"
    assert (room.seats[0].symbol, room.seats[0].player_id) == ("X", "player1")
    assert room.state.board == [None] * 9


def test_join_is_case_insensitive_and_activates(store):
    rooms = RoomRegistry(PersistenceGateway(store), id_factory=sequential_ids("AB12CD"))
    rooms.create_room(seat("u1"))
    room = rooms.join_room("ab12cd", seat("u2"))
    assert room.status == "active"
    assert [(s.symbol, s.player_id) for s in room.seats] == [("X", "player1"), ("O", "player2")]


def test_join_unknown_room(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    with pytest.raises(RoomNotFound):
        rooms.join_room("ZZZZZZ", seat("u1"))


def test_join_full_room_leaves_it_untouched(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    room = rooms.create_room(seat("u1"))
    rooms.join_room(room.id, seat("u2"))
    before = [s.user_id for s in room.seats]
    with pytest.raises(RoomFull):
        rooms.join_room(room.id, seat("u3"))
    assert [s.user_id for s in room.seats] == before
    assert room.status == "active"


def test_apply_move_trusts_client_state_by_default(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    room = rooms.create_room(seat("u1"))
    rooms.join_room(room.id, seat("u2"))
    bogus = GameState(
        board=["O"] * 9,
        current_player="O",
        phase="movement",
        pieces_placed={"X": 0, "O": 9},
    )
    result = rooms.apply_move(room.id, bogus)
    assert room.state is bogus
    assert result.move_number == 1
    assert result.mover == "X"
    assert result.winner == "O"


def test_apply_move_unknown_room(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    with pytest.raises(RoomNotFound):
        rooms.apply_move("NOPE00", GameState())


def test_strict_mode_rejects_and_keeps_state(store):
    rooms = RoomRegistry(PersistenceGateway(store), validate_moves=True)
    owner = seat("u1")
    room = rooms.create_room(owner)
    rooms.join_room(room.id, seat("u2"))
    with pytest.raises(IllegalMove):
        rooms.apply_move(room.id, win_for_x(), owner.connection)
    assert room.state == GameState()
    assert room.move_count == 0


def test_strict_mode_rejects_unseated_sender(store):
    rooms = RoomRegistry(PersistenceGateway(store), validate_moves=True)
    room = rooms.create_room(seat("u1"))
    rooms.join_room(room.id, seat("u2"))
    stranger = Connection(FakeSocket())
    with pytest.raises(IllegalMove):
        rooms.apply_move(room.id, GameState(), stranger)


def test_remove_by_seat_returns_remaining_opponent(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    owner, joiner = seat("u1"), seat("u2")
    room = rooms.create_room(owner)
    rooms.join_room(room.id, joiner)
    removed_room, remaining = rooms.remove_by_seat(owner.connection)
    assert removed_room is room
    assert remaining is joiner
    assert room.id not in rooms
    assert rooms.remove_by_seat(owner.connection) is None


def test_finished_room_persists_outcome_and_stats(store, run):
    x_user = add_user(store, "fx", "Ann")
    o_user = add_user(store, "fo", "Bob")
    bystander = add_user(store, "fz", "Cid")

    async def scenario():
        gateway = PersistenceGateway(store)
        gateway.start()
        rooms = RoomRegistry(gateway)
        room = rooms.create_room(seat(x_user))
        rooms.join_room(room.id, seat(o_user))
        result = rooms.apply_move(room.id, win_for_x())
        await gateway.stop()
        return room, result, gateway

    room, result, gateway = run(scenario())
    assert result.winner == "X"
    assert room.status == "finished"
    assert not gateway.failures

    stored = store.get_room(room.id)
    assert stored["status"] == "finished"
    assert stored["winner"] == "X"
    assert stored["ended_at"] is not None

    assert store.get_user(x_user)["gamesWon"] == 1
    assert store.get_user(x_user)["gamesPlayed"] == 1
    assert store.get_user(x_user)["gamesLost"] == 0
    assert store.get_user(o_user)["gamesLost"] == 1
    assert store.get_user(o_user)["gamesPlayed"] == 1
    assert store.get_user(o_user)["gamesWon"] == 0
    assert store.get_user(bystander)["gamesPlayed"] == 0

    history = store.room_history(room.id)
    assert [(m["move_number"], m["player_symbol"]) for m in history] == [(1, "X")]
    assert history[0]["board_state"] == win_for_x().board


def test_outcome_is_reported_once(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    room = rooms.create_room(seat("u1"))
    rooms.join_room(room.id, seat("u2"))
    first = rooms.apply_move(room.id, win_for_x())
    late = GameState(
        board=["X", "X", "X", "O", "O", "O", None, None, None],
        current_player="X",
        phase="movement",
        pieces_placed={"X": 3, "O": 3},
    )
    second = rooms.apply_move(room.id, late)
    assert first.finished is True
    assert second.finished is False
    assert second.move_number == 2
    assert room.status == "finished"
    assert room.winner == "X"


def test_release_finished_only_touches_finished_rooms(store):
    rooms = RoomRegistry(PersistenceGateway(store))
    owner, joiner = seat("u1"), seat("u2")
    room = rooms.create_room(owner)
    rooms.join_room(room.id, joiner)
    assert rooms.release_finished(owner.connection) is None
    assert rooms.room_for(owner.connection) is room

    rooms.apply_move(room.id, win_for_x())
    released_room, remaining = rooms.release_finished(owner.connection)
    assert released_room is room
    assert remaining is joiner
    assert room.id not in rooms
    assert room.status == "finished"
