import pytest

from models.errors import CapacityError, UnknownConnection
from services.session_registry import SessionRegistry


def _join(reg, conn, pid=None, name=None, role="Logic", x=400, y=300):
    pid = pid or f"p-{conn}"
    return reg.join(conn, pid, name or pid, role, x, y, 800, 600)


def test_join_returns_public_snapshot():
    reg = SessionRegistry("r1")
    players = _join(reg, "c1", pid="alice", name="Alice")
    assert players == [{
        "id": "alice", "name": "Alice", "role": "Logic", "x": 400, "y": 300,
        "viewportWidth": 800, "viewportHeight": 600,
    }]
    assert "connectionId" not in players[0]
    assert reg.count == 1


def test_ninth_join_rejected_and_room_unchanged():
    reg = SessionRegistry("r1", capacity=8)
    for i in range(8):
        _join(reg, f"c{i}")
    before = reg.snapshot()

    with pytest.raises(CapacityError) as exc_info:
        _join(reg, "c8")

    assert exc_info.value.code == "ROOM_FULL"
    assert reg.count == 8
    assert reg.snapshot() == before
    assert not reg.has("c8")


def test_reconnect_rebinds_player_to_new_connection():
    reg = SessionRegistry("r1", capacity=2)
    _join(reg, "c1", pid="alice")
    _join(reg, "c2", pid="bob")

    # full, but alice reconnecting is not a new seat
    _join(reg, "c3", pid="alice", x=100)

    assert reg.count == 2
    assert not reg.has("c1")
    assert reg.get("c3").id == "alice"
    assert reg.get("c3").x == 100


def test_rejoin_on_same_connection_updates_in_place():
    reg = SessionRegistry("r1", capacity=1)
    _join(reg, "c1", pid="alice", role="Logic")
    _join(reg, "c1", pid="alice", role="Emotion")
    assert reg.count == 1
    assert reg.get("c1").role == "Emotion"


def test_move_updates_position():
    reg = SessionRegistry("r1")
    _join(reg, "c1")
    assert reg.move("c1", 10, 20) is True
    player = reg.get("c1")
    assert (player.x, player.y) == (10, 20)


def test_move_unknown_connection_is_noop():
    reg = SessionRegistry("r1")
    assert reg.move("ghost", 10, 20) is False
    assert reg.count == 0


def test_leave():
    reg = SessionRegistry("r1")
    _join(reg, "c1", pid="alice")
    left = reg.leave("c1")
    assert left.id == "alice"
    assert reg.is_empty
    assert reg.leave("c1") is None


def test_get_unknown_connection_raises():
    with pytest.raises(UnknownConnection):
        SessionRegistry("r1").get("ghost")


def test_roles_distinct_in_join_order():
    reg = SessionRegistry("r1")
    _join(reg, "c1", role="Emotion")
    _join(reg, "c2", role="Logic")
    _join(reg, "c3", role="Emotion")
    _join(reg, "c4", role="")
    assert reg.roles() == ["Emotion", "Logic"]
