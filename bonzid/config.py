from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any

from .constants import DEFAULT_PALETTE

log = logging.getLogger("bonzid.config")

RANDOM = "random"


@dataclass(frozen=True)
class RangePrefs:
    min: int
    max: int
    default: int | str = RANDOM


@dataclass(frozen=True)
class RoomPrefs:
    """Immutable per-room preferences, snapshotted when the room is created."""

    room_max: int = 100
    name_limit: int = 24
    char_limit: int = 400
    default_name: str = "Anonymous"
    pitch: RangePrefs = RangePrefs(15, 125, RANDOM)
    speed: RangePrefs = RangePrefs(125, 275, 175)
    runlevel: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    owner: str | None = None
    godword: str | None = None

    def runlevel_for(self, command: str) -> int:
        return int(self.runlevel.get(command, 0) or 0)


DEFAULT_PUBLIC_PREFS = RoomPrefs()
DEFAULT_PRIVATE_PREFS = RoomPrefs(room_max=20)


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    ban_file_path: str | None = None
    dest_name: str = "bonzi.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "bonzid"
    banned_addresses: tuple[str, ...] = ()
    rate_limit_events_per_minute: int = 240
    enable_resource_transfer: bool = True
    max_resource_bytes: int = 256 * 1024
    palette: tuple[str, ...] = DEFAULT_PALETTE
    public_prefs: RoomPrefs = DEFAULT_PUBLIC_PREFS
    private_prefs: RoomPrefs = DEFAULT_PRIVATE_PREFS
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_access_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def _parse_range(value: Any, base: RangePrefs) -> RangePrefs:
    if not isinstance(value, dict):
        return base
    lo = value.get("min", base.min)
    hi = value.get("max", base.max)
    default = value.get("default", base.default)
    if not isinstance(lo, int) or not isinstance(hi, int):
        raise ValueError("range min/max must be integers")
    if lo > hi:
        raise ValueError(f"range min {lo} is greater than max {hi}")
    if isinstance(default, str):
        if default.strip().lower() != RANDOM:
            raise ValueError(f"range default must be an integer or {RANDOM!r}")
        default = RANDOM
    elif not isinstance(default, int):
        raise ValueError(f"range default must be an integer or {RANDOM!r}")
    return RangePrefs(min=lo, max=hi, default=default)


def parse_room_prefs(table: Any, base: RoomPrefs) -> RoomPrefs:
    """Overlay a ``[rooms.public]`` / ``[rooms.private]`` table onto ``base``."""
    if not isinstance(table, dict):
        return base

    updates: dict[str, Any] = {}
    for key in ("room_max", "name_limit", "char_limit"):
        if key in table:
            v = table[key]
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise ValueError(f"{key} must be a non-negative integer")
            updates[key] = v

    if "default_name" in table:
        updates["default_name"] = str(table["default_name"])

    if "pitch" in table:
        updates["pitch"] = _parse_range(table["pitch"], base.pitch)
    if "speed" in table:
        updates["speed"] = _parse_range(table["speed"], base.speed)

    rl = table.get("runlevel")
    if isinstance(rl, dict):
        levels: dict[str, int] = {}
        for cmd, lvl in rl.items():
            try:
                levels[str(cmd).lower()] = max(0, int(lvl))
            except (TypeError, ValueError):
                log.warning("Ignoring runlevel for command %r: %r", cmd, lvl)
        updates["runlevel"] = MappingProxyType(levels)

    godword = table.get("godword")
    if isinstance(godword, str):
        updates["godword"] = godword or None

    return replace(base, **updates) if updates else base


def apply_config_data(base: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for src, dst in (
            ("level", "log_level"),
            ("rns_level", "log_rns_level"),
            ("console", "log_console"),
            ("file", "log_file"),
            ("access_file", "log_access_file"),
            ("format", "log_format"),
            ("datefmt", "log_datefmt"),
        ):
            if src in log_table:
                mapped[dst] = log_table.get(src)
        data = {**data, **mapped}

    allowed = {f.name for f in fields(base)}
    # This identifies where to reload from; do not let the file override it.
    allowed.discard("config_path")
    allowed.discard("public_prefs")
    allowed.discard("private_prefs")

    updates = {k: v for k, v in data.items() if k in allowed}

    for list_key in ("banned_addresses", "palette"):
        if list_key in updates and isinstance(updates[list_key], list):
            updates[list_key] = tuple(str(x) for x in updates[list_key])

    if "palette" in updates and not updates["palette"]:
        raise ValueError("palette must not be empty")

    rooms = data.get("rooms")
    if isinstance(rooms, dict):
        updates["public_prefs"] = parse_room_prefs(rooms.get("public"), base.public_prefs)
        updates["private_prefs"] = parse_room_prefs(
            rooms.get("private"), base.private_prefs
        )

    for opt_key in (
        "configdir",
        "ban_file_path",
        "log_file",
        "log_access_file",
        "log_datefmt",
    ):
        if opt_key in updates and updates[opt_key] == "":
            updates[opt_key] = None

    return replace(base, **updates) if updates else base
