from __future__ import annotations

import enum
import logging
import random
import re
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from .commands import (
    Broadcast,
    CommandContext,
    CommandOutcome,
    Handler,
    Passthrough,
    Reply,
    SetRunlevel,
    SetSanitize,
    UpdateProfile,
    lookup,
)
from .config import RANDOM, RangePrefs
from .constants import (
    CC_IDENT,
    DEFAULT_PALETTE,
    EV_COMMAND,
    EV_COMMAND_FAIL,
    EV_DISCONNECT,
    EV_LOGIN,
    EV_LOGIN_FAIL,
    EV_ROOM,
    EV_TALK,
    EV_UPDATE_ALL,
    PLACEHOLDER_TEXT,
    R_FULL,
    R_NAME_LENGTH,
    R_NAME_MAL,
    R_RUNLEVEL,
    R_UNKNOWN,
    UNKNOWN_ADDR,
)
from .logging_config import ACCESS_LOGGER
from .rooms import Room, RoomDirectory, RoomFullError
from .sanitize import sanitize
from .util import guid_gen, random_range_int

if TYPE_CHECKING:
    from .bans import BanGuard
    from .connection import LinkConnection

_ROOM_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

access_log = logging.getLogger(ACCESS_LOGGER)


class Phase(enum.Enum):
    ANONYMOUS = "anonymous"
    LOGGED_IN = "logged_in"
    DISCONNECTED = "disconnected"


@dataclass
class PrivateState:
    """Per-session state that is never broadcast."""

    login: bool = False
    sanitize: bool = True
    runlevel: int = 0


@dataclass
class Profile:
    """Public profile, broadcast to room peers whenever it changes."""

    name: str = ""
    color: str = ""
    pitch: int = 0
    speed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _initial_value(rng: RangePrefs) -> int:
    if rng.default == RANDOM:
        return random_range_int(rng.min, rng.max)
    return int(rng.default)


class Session:
    """
    One connected user.

    Lifecycle: ``ANONYMOUS`` until a valid ``login``, then ``LOGGED_IN`` until
    the link goes away, then ``DISCONNECTED`` for good. ``talk`` and
    ``command`` listeners exist only while logged in, and ``room`` is set
    exactly while logged in.
    """

    def __init__(
        self,
        connection: LinkConnection,
        directory: RoomDirectory,
        *,
        ban_guard: BanGuard | None = None,
        palette: Iterable[str] = DEFAULT_PALETTE,
    ) -> None:
        self.guid = guid_gen()
        self.connection = connection
        self.directory = directory
        self.palette = tuple(palette)
        self.log = logging.getLogger("bonzid.session")

        self.private = PrivateState()
        self.public = Profile(color=random.choice(self.palette))
        self.room: Room | None = None
        self.phase = Phase.ANONYMOUS

        address = self._address()
        if ban_guard is not None and ban_guard.is_banned(address):
            ban_guard.handle_ban(connection)
            self.phase = Phase.DISCONNECTED
            return

        access_log.info("connect guid=%s ip=%s", self.guid, address)
        self.connection.on(EV_LOGIN, self.login)

    def __repr__(self) -> str:
        rid = self.room.rid if self.room is not None else None
        return f"<Session guid={self.guid} phase={self.phase.value} room={rid}>"

    @property
    def logged_in(self) -> bool:
        return self.phase is Phase.LOGGED_IN

    def _address(self) -> str:
        try:
            return self.connection.remote_address()
        except Exception:
            return UNKNOWN_ADDR

    def _login_fail(self, reason: str) -> None:
        self.log.debug("loginFail guid=%s reason=%s", self.guid, reason)
        self.connection.emit(EV_LOGIN_FAIL, {"reason": reason})

    def login(self, data: Any) -> None:
        if self.phase is not Phase.ANONYMOUS:
            return
        if not isinstance(data, dict):
            # Malformed login is dropped; the client stays anonymous.
            self.log.debug(
                "Dropping malformed login guid=%s type=%s", self.guid, type(data).__name__
            )
            return

        self.log.info("login guid=%s", self.guid)

        rid = data.get("room")
        # An explicit null room counts as supplied and fails the name check.
        room_specified = "room" in data and rid != ""
        self.log.debug("roomSpecified guid=%s roomSpecified=%s", self.guid, room_specified)

        if room_specified:
            rid = sanitize(rid, CC_IDENT)
            if not _ROOM_ID_RE.match(rid):
                self._login_fail(R_NAME_MAL)
                return
            existing = self.directory.get(rid)
            if existing is not None and existing.is_full():
                self._login_fail(R_FULL)
                return
            prefs = existing.prefs if existing is not None else self.directory.private_prefs
        else:
            prefs = self.directory.public_prefs

        # Validate before resolving so a rejected login never leaves an empty room.
        name = sanitize(data.get("name"), CC_IDENT) or prefs.default_name
        if len(name) > prefs.name_limit:
            self._login_fail(R_NAME_LENGTH)
            return

        if room_specified:
            try:
                room = self.directory.resolve_or_create_private_room(rid, self.guid)
            except RoomFullError:
                self._login_fail(R_FULL)
                return
        else:
            rid = self.directory.resolve_public_room()
            room = self.directory.rooms[rid]

        self.public.name = name
        self.public.pitch = _initial_value(room.prefs.pitch)
        self.public.speed = _initial_value(room.prefs.speed)

        room.join(self)
        self.room = room
        self.private.login = True
        self.phase = Phase.LOGGED_IN
        self.connection.remove_all_listeners(EV_LOGIN)

        self.connection.emit(EV_UPDATE_ALL, {"usersPublic": room.get_users_public()})
        self.connection.emit(
            EV_ROOM,
            {
                "room": room.rid,
                "isOwner": room.prefs.owner == self.guid,
                "isPublic": self.directory.is_public(room.rid),
            },
        )

        self.connection.on(EV_TALK, self.talk)
        self.connection.on(EV_COMMAND, self.command)
        self.connection.on(EV_DISCONNECT, self.disconnect)

    def talk(self, data: Any) -> None:
        if self.room is None:
            return
        if not isinstance(data, dict):
            data = {"text": PLACEHOLDER_TEXT}

        self.log.debug("talk guid=%s text=%r", self.guid, data.get("text"))

        if data.get("text") is None:
            return

        text = sanitize(data["text"])
        if 0 < len(text) <= self.room.prefs.char_limit:
            self.room.emit(EV_TALK, {"guid": self.guid, "text": text})

    def command(self, data: Any) -> None:
        room = self.room
        if room is None:
            return

        tokens = data.get("list") if isinstance(data, dict) else None
        if not isinstance(tokens, list) or len(tokens) < 1:
            self.log.warning("maliciousCommand guid=%s data=%r", self.guid, data)
            room.emit(EV_TALK, {"guid": self.guid, "text": PLACEHOLDER_TEXT})
            return

        name = None
        args: tuple[str, ...] = ()
        try:
            cleaned = [sanitize(str(t), CC_IDENT) for t in tokens]
            name = cleaned[0].lower()
            args = tuple(cleaned[1:])

            self.log.debug("command guid=%s name=%s args=%r", self.guid, name, args)

            if self.private.runlevel < room.prefs.runlevel_for(name):
                self.connection.emit(EV_COMMAND_FAIL, {"reason": R_RUNLEVEL})
                return

            entry = lookup(name)
            if isinstance(entry, Passthrough):
                room.emit(name, {"guid": self.guid})
                return
            if not isinstance(entry, Handler):
                raise LookupError(f"no such command {name!r}")

            outcome = entry.fn(CommandContext(self, room, args))
        except Exception:
            self.log.warning(
                "commandFail guid=%s command=%s args=%r reason=%s",
                self.guid,
                name,
                args,
                R_UNKNOWN,
                exc_info=True,
            )
            self.connection.emit(EV_COMMAND_FAIL, {"reason": R_UNKNOWN})
            return

        if not outcome.ok:
            self.connection.emit(EV_COMMAND_FAIL, {"reason": outcome.fail})
            return

        self._apply(outcome, room)

    def _apply(self, outcome: CommandOutcome, room: Room) -> None:
        profile_changed = False
        for effect in outcome.effects:
            if isinstance(effect, Broadcast):
                room.emit(effect.event, effect.payload)
            elif isinstance(effect, Reply):
                self.connection.emit(effect.event, effect.payload)
            elif isinstance(effect, UpdateProfile):
                for key, value in effect.changes.items():
                    setattr(self.public, key, value)
                profile_changed = True
            elif isinstance(effect, SetRunlevel):
                self.private.runlevel = max(0, int(effect.level))
            elif isinstance(effect, SetSanitize):
                self.private.sanitize = bool(effect.enabled)

        if profile_changed:
            room.update_user(self)

    def disconnect(self, data: Any = None) -> None:
        if self.phase is Phase.DISCONNECTED:
            return

        ip = UNKNOWN_ADDR
        port = UNKNOWN_ADDR
        try:
            ip = self.connection.remote_address()
            port = self.connection.remote_port()
        except Exception:
            self.log.warning("exception guid=%s", self.guid, exc_info=True)

        access_log.info("disconnect guid=%s ip=%s port=%s", self.guid, ip, port)

        for event in (EV_LOGIN, EV_TALK, EV_COMMAND, EV_DISCONNECT):
            self.connection.remove_all_listeners(event)

        room = self.room
        if room is not None:
            room.leave(self)
        self.room = None
        self.private.login = False
        self.phase = Phase.DISCONNECTED
