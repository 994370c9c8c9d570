import pytest

from bonzid.config import RoomPrefs
from bonzid.rooms import Room, RoomDirectory, RoomFullError


def test_resolve_public_room_creates_then_reuses(directory) -> None:
    rid = directory.resolve_public_room()
    assert rid in directory
    assert directory.is_public(rid)
    assert directory.resolve_public_room() == rid


def test_resolve_public_room_prefers_newest(logged_in, directory) -> None:
    a = logged_in(room="")
    b = logged_in(room="")
    first = a.session.room
    assert b.session.room is first
    assert first.is_full()

    c = logged_in(room="")
    second = c.session.room
    assert second is not first

    # A seat frees up in the old room, but the newest public room wins.
    b.session.disconnect()
    assert not first.is_full()
    assert directory.resolve_public_room() == second.rid


def test_private_room_gets_owner(directory) -> None:
    room = directory.resolve_or_create_private_room("lobby", "owner-guid")
    assert room.prefs.owner == "owner-guid"
    assert not directory.is_public("lobby")
    assert directory.private_prefs.owner is None


def test_private_room_full_raises(logged_in, directory) -> None:
    logged_in(room="lobby")
    logged_in(room="lobby")
    with pytest.raises(RoomFullError):
        directory.resolve_or_create_private_room("lobby", "someone")


def test_last_leave_reclaims_room(logged_in, directory) -> None:
    a = logged_in(room="")
    rid = a.session.room.rid
    assert directory.is_public(rid)

    a.session.disconnect()
    assert rid not in directory
    assert not directory.is_public(rid)
    assert len(directory) == 0


def test_leave_for_non_member_is_noop(logged_in, make_client) -> None:
    a = logged_in(room="lobby")
    stranger = make_client()
    room = a.session.room
    before = len(a.events("leave"))

    room.leave(stranger.session)
    assert len(room) == 1
    assert len(a.events("leave")) == before


def test_join_broadcasts_update_to_whole_room(logged_in) -> None:
    a = logged_in(room="lobby", name="alpha")
    b = logged_in(room="lobby", name="beta")

    updates_for_a = a.events("update")
    assert updates_for_a[-1]["guid"] == b.guid
    assert updates_for_a[-1]["userPublic"]["name"] == "beta"
    assert b.events("update")[-1]["guid"] == b.guid


def test_get_users_public_snapshot(logged_in) -> None:
    a = logged_in(room="lobby", name="alpha")
    b = logged_in(room="lobby", name="beta")
    snap = a.session.room.get_users_public()
    assert set(snap) == {a.guid, b.guid}
    assert snap[b.guid]["name"] == "beta"
    assert set(snap[a.guid]) == {"name", "color", "pitch", "speed"}


def test_is_full_uses_room_max() -> None:
    room = Room("r", RoomPrefs(room_max=0))
    assert room.is_full()


def test_stats_count_rooms_and_members(logged_in, directory) -> None:
    logged_in(room="lobby")
    logged_in(room="lobby")
    logged_in(room="")
    stats = directory.get_stats()
    assert stats["rooms_total"] == 2
    assert stats["rooms_public"] == 1
    assert stats["memberships"] == 3
    assert stats["top_rooms"][0] == ("lobby", 2)


def test_clear_all_forgets_everything() -> None:
    d = RoomDirectory()
    d.resolve_public_room()
    d.resolve_or_create_private_room("x", "g")
    d.clear_all()
    assert len(d) == 0
    assert d.rooms_public == []
