"""User commands for the bonzid hub.

Every command is either a ``Passthrough`` (its name is broadcast with the
sender's guid and nothing else) or a ``Handler``. Handlers never touch the
session or room directly: they read a ``CommandContext`` and return a
``CommandOutcome`` describing what should happen. ``Session.command`` applies
the outcome.
"""

from __future__ import annotations

import random
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Union

from .constants import (
    CC_IDENT,
    CC_URL,
    POPE_COLOR,
    R_INVALID_FORMAT,
    RUNLEVEL_MAX,
    SANITIZE_OFF_TERMS,
    VAPORWAVE_VID,
)
from .sanitize import sanitize
from .util import args_string, clamp, parse_leading_int

if TYPE_CHECKING:
    from .rooms import Room
    from .session import Session

_YOUTUBE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")


# Effects


@dataclass(frozen=True)
class Broadcast:
    event: str
    payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class Reply:
    event: str
    payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class UpdateProfile:
    """Change public profile fields, then broadcast an ``update``."""

    changes: dict[str, Any]


@dataclass(frozen=True)
class SetRunlevel:
    level: int


@dataclass(frozen=True)
class SetSanitize:
    enabled: bool


Effect = Union[Broadcast, Reply, UpdateProfile, SetRunlevel, SetSanitize]


@dataclass(frozen=True)
class CommandOutcome:
    effects: tuple[Effect, ...] = ()
    fail: str | None = None

    @property
    def ok(self) -> bool:
        return self.fail is None


def done(*effects: Effect) -> CommandOutcome:
    return CommandOutcome(effects=tuple(effects))


def failed(reason: str) -> CommandOutcome:
    return CommandOutcome(fail=reason)


@dataclass(frozen=True)
class CommandContext:
    session: Session
    room: Room
    args: tuple[str, ...] = ()

    @property
    def guid(self) -> str:
        return self.session.guid

    def arg(self, index: int = 0) -> str | None:
        return self.args[index] if index < len(self.args) else None


HandlerFn = Callable[[CommandContext], CommandOutcome]


@dataclass(frozen=True)
class Passthrough:
    pass


@dataclass(frozen=True)
class Handler:
    fn: HandlerFn = field(repr=False)


CommandSpec = Union[Passthrough, Handler]


# Handlers


def cmd_godmode(ctx: CommandContext) -> CommandOutcome:
    godword = ctx.room.prefs.godword
    success = godword is not None and ctx.arg() == godword
    ctx.session.log.debug("godmode guid=%s success=%s", ctx.guid, success)
    if not success:
        return done()
    return done(SetRunlevel(RUNLEVEL_MAX))


def cmd_sanitize(ctx: CommandContext) -> CommandOutcome:
    words = args_string(ctx.args).lower()
    return done(SetSanitize(words not in SANITIZE_OFF_TERMS))


def _rng_event(event: str) -> HandlerFn:
    def handler(ctx: CommandContext) -> CommandOutcome:
        return done(Broadcast(event, {"guid": ctx.guid, "rng": random.random()}))

    handler.__name__ = f"cmd_{event}"
    return handler


def _url_event(event: str) -> HandlerFn:
    def handler(ctx: CommandContext) -> CommandOutcome:
        url = sanitize(ctx.arg(), CC_URL)
        if not url.startswith("http"):
            return failed(R_INVALID_FORMAT)
        return done(Broadcast(event, {"guid": ctx.guid, "vid": url}))

    handler.__name__ = f"cmd_{event}"
    return handler


def _target_event(event: str) -> HandlerFn:
    def handler(ctx: CommandContext) -> CommandOutcome:
        return done(Broadcast(event, {"guid": ctx.guid, "target": sanitize(ctx.arg())}))

    handler.__name__ = f"cmd_{event}"
    return handler


def cmd_youtube(ctx: CommandContext) -> CommandOutcome:
    vid = sanitize(ctx.arg(), CC_IDENT)
    if not _YOUTUBE_ID_RE.match(vid):
        return failed(R_INVALID_FORMAT)
    return done(Broadcast("youtube", {"guid": ctx.guid, "vid": vid}))


def cmd_backflip(ctx: CommandContext) -> CommandOutcome:
    return done(Broadcast("backflip", {"guid": ctx.guid, "swag": ctx.arg() == "swag"}))


def cmd_asshole(ctx: CommandContext) -> CommandOutcome:
    target = sanitize(args_string(ctx.args))
    return done(Broadcast("asshole", {"guid": ctx.guid, "target": target}))


def cmd_color(ctx: CommandContext) -> CommandOutcome:
    palette = ctx.session.palette
    color = ctx.arg()
    if color is not None:
        if color not in palette:
            return done()
    else:
        color = random.choice(palette)
    return done(UpdateProfile({"color": color}))


def cmd_pope(ctx: CommandContext) -> CommandOutcome:
    return done(UpdateProfile({"color": POPE_COLOR}))


def cmd_vaporwave(ctx: CommandContext) -> CommandOutcome:
    return done(
        Reply("vaporwave"),
        Broadcast("youtube", {"guid": ctx.guid, "vid": VAPORWAVE_VID}),
    )


def cmd_unvaporwave(ctx: CommandContext) -> CommandOutcome:
    return done(Reply("unvaporwave"))


def cmd_name(ctx: CommandContext) -> CommandOutcome:
    prefs = ctx.room.prefs
    raw = args_string(ctx.args)
    if len(raw) > prefs.name_limit:
        return done()
    name = sanitize(raw, CC_IDENT) or prefs.default_name
    return done(UpdateProfile({"name": name}))


def _ranged(attr: str) -> HandlerFn:
    def handler(ctx: CommandContext) -> CommandOutcome:
        value = parse_leading_int(ctx.arg())
        if value is None:
            return done()
        rng = getattr(ctx.room.prefs, attr)
        return done(UpdateProfile({attr: clamp(value, rng.min, rng.max)}))

    handler.__name__ = f"cmd_{attr}"
    return handler


COMMANDS: MappingProxyType[str, CommandSpec] = MappingProxyType(
    {
        "godmode": Handler(cmd_godmode),
        "sanitize": Handler(cmd_sanitize),
        "joke": Handler(_rng_event("joke")),
        "fact": Handler(_rng_event("fact")),
        "img": Handler(_url_event("img")),
        "video": Handler(_url_event("video")),
        "iframe": Handler(_url_event("iframe")),
        "youtube": Handler(cmd_youtube),
        "backflip": Handler(cmd_backflip),
        "muted": Handler(_target_event("muted")),
        "owo": Handler(_target_event("owo")),
        "linux": Passthrough(),
        "pawn": Passthrough(),
        "bees": Passthrough(),
        "color": Handler(cmd_color),
        "pope": Handler(cmd_pope),
        "asshole": Handler(cmd_asshole),
        "triggered": Passthrough(),
        "vaporwave": Handler(cmd_vaporwave),
        "unvaporwave": Handler(cmd_unvaporwave),
        "name": Handler(cmd_name),
        "pitch": Handler(_ranged("pitch")),
        "speed": Handler(_ranged("speed")),
    }
)


def lookup(name: str) -> CommandSpec | None:
    return COMMANDS.get(name)
