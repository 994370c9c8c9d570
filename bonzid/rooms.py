"""Room management for the bonzid hub.

This module handles:
- Room membership and capacity
- Fan-out of events to every member of a room
- The directory of live rooms and of auto-assignable public rooms
- Reclaiming rooms as soon as their last member leaves
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .config import DEFAULT_PRIVATE_PREFS, DEFAULT_PUBLIC_PREFS, RoomPrefs
from .constants import EV_LEAVE, EV_UPDATE
from .util import guid_gen

if TYPE_CHECKING:
    from .session import Session

log = logging.getLogger("bonzid.rooms")


class RoomFullError(Exception):
    def __init__(self, rid: str) -> None:
        super().__init__(f"room {rid} is full")
        self.rid = rid


class Room:
    """A broadcast scope shared by the sessions joined to it."""

    def __init__(
        self,
        rid: str,
        prefs: RoomPrefs,
        *,
        on_empty: Callable[[Room], None] | None = None,
    ) -> None:
        self.rid = rid
        self.prefs = prefs
        self.users: list[Session] = []
        self._on_empty = on_empty

    def __len__(self) -> int:
        return len(self.users)

    def __contains__(self, session: object) -> bool:
        return session in self.users

    def __repr__(self) -> str:
        return f"<Room rid={self.rid} users={len(self.users)}>"

    def is_full(self) -> bool:
        return len(self.users) >= self.prefs.room_max

    def join(self, session: Session) -> None:
        self.users.append(session)
        self.update_user(session)

    def leave(self, session: Session) -> None:
        if session not in self.users:
            return

        self.emit(EV_LEAVE, {"guid": session.guid})
        self.users.remove(session)

        if not self.users and self._on_empty is not None:
            self._on_empty(self)

    def update_user(self, session: Session) -> None:
        self.emit(
            EV_UPDATE,
            {"guid": session.guid, "userPublic": session.public.to_dict()},
        )

    def get_users_public(self) -> dict[str, dict[str, Any]]:
        return {u.guid: u.public.to_dict() for u in self.users}

    def emit(self, event: str, payload: Any = None) -> None:
        for user in list(self.users):
            user.connection.emit(event, payload)


class RoomDirectory:
    """Process-wide registry of live rooms, created on demand and reclaimed when empty."""

    def __init__(
        self,
        public_prefs: RoomPrefs = DEFAULT_PUBLIC_PREFS,
        private_prefs: RoomPrefs = DEFAULT_PRIVATE_PREFS,
    ) -> None:
        self.public_prefs = public_prefs
        self.private_prefs = private_prefs
        self.rooms: dict[str, Room] = {}
        self.rooms_public: list[str] = []

    def __contains__(self, rid: object) -> bool:
        return rid in self.rooms

    def __len__(self) -> int:
        return len(self.rooms)

    def get(self, rid: str) -> Room | None:
        return self.rooms.get(rid)

    def is_public(self, rid: str) -> bool:
        return rid in self.rooms_public

    def _new_room(self, rid: str, prefs: RoomPrefs) -> Room:
        room = Room(rid, prefs, on_empty=self.reclaim)
        self.rooms[rid] = room
        log.debug("New room rid=%s room_max=%s owner=%s", rid, prefs.room_max, prefs.owner)
        return room

    def resolve_public_room(self) -> str:
        """Newest public room with space, or a freshly created one."""
        if self.rooms_public:
            rid = self.rooms_public[-1]
            room = self.rooms.get(rid)
            if room is not None and not room.is_full():
                return rid

        rid = guid_gen()
        while rid in self.rooms:
            rid = guid_gen()
        self.rooms_public.append(rid)
        self._new_room(rid, self.public_prefs)
        return rid

    def resolve_or_create_private_room(self, rid: str, requester: str) -> Room:
        room = self.rooms.get(rid)
        if room is None:
            return self._new_room(rid, replace(self.private_prefs, owner=requester))
        if room.is_full():
            raise RoomFullError(rid)
        return room

    def reclaim(self, room: Room) -> None:
        if room.users:
            return

        log.debug("Removing room rid=%s", room.rid)
        try:
            self.rooms_public.remove(room.rid)
        except ValueError:
            pass
        if self.rooms.get(room.rid) is room:
            del self.rooms[room.rid]

    def clear_all(self) -> None:
        """Forget every room. Called during hub shutdown."""
        self.rooms.clear()
        self.rooms_public.clear()

    def get_stats(self) -> dict[str, Any]:
        memberships = sum(len(r) for r in self.rooms.values())
        top_rooms = sorted(
            ((rid, len(room)) for rid, room in self.rooms.items()),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": len(self.rooms),
            "rooms_public": len(self.rooms_public),
            "memberships": memberships,
            "top_rooms": top_rooms,
        }

