"""Ban list lookup, enforcement and persistence for the hub."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .constants import EV_BAN

if TYPE_CHECKING:
    from .connection import LinkConnection

PERMANENT = 0.0


@dataclass(frozen=True)
class BanEntry:
    reason: str = ""
    end: float = PERMANENT

    def expired(self, now: float | None = None) -> bool:
        if self.end <= 0:
            return False
        return (time.time() if now is None else now) >= self.end


def normalize_address(text) -> str:
    s = str(text).strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    return "".join(ch for ch in s if not ch.isspace())


class BanGuard:
    """
    Decides whether an origin address is banned and enforces it.

    Handles:
    - Permanent bans listed in the hub config (``banned_addresses``)
    - Timed or permanent bans kept in a TOML ban file
    - Persisting ban file edits without losing comments (tomlkit)
    """

    def __init__(self, path: str | None = None, permanent: Iterable[str] = ()) -> None:
        self.path = path
        self.log = logging.getLogger("bonzid.bans")
        self._permanent: set[str] = {
            normalize_address(a) for a in permanent if str(a).strip()
        }
        self._bans: dict[str, BanEntry] = {}
        self._write_lock = threading.Lock()

    def load(self) -> str | None:
        """Load the ban file. Returns an error message, or None on success."""
        if not self.path or not os.path.exists(self.path):
            self._bans = {}
            return None

        try:
            from tomlkit import parse
        except ImportError:
            return "missing dependency tomlkit"

        try:
            with open(self.path, encoding="utf-8") as f:
                doc = parse(f.read())
        except Exception as e:
            return f"parse error: {e}"

        section = doc.get("bans")
        if section is None:
            self._bans = {}
            return None
        if not isinstance(section, dict):
            return "ban file: [bans] must be a table"

        bans: dict[str, BanEntry] = {}
        for raw_addr, raw in section.items():
            addr = normalize_address(raw_addr)
            if not addr:
                continue
            if not isinstance(raw, dict):
                self.log.warning("Skipping malformed ban entry address=%s", addr)
                continue
            try:
                end = float(raw.get("end", PERMANENT))
            except (TypeError, ValueError):
                self.log.warning("Skipping ban with bad end address=%s", addr)
                continue
            bans[addr] = BanEntry(reason=str(raw.get("reason", "")), end=end)

        self._bans = bans
        self.log.info("Loaded %s ban(s) from %s", len(bans), self.path)
        return None

    def save(self) -> None:
        if not self.path:
            raise RuntimeError("no ban file configured")

        from tomlkit import document, dumps, parse, table

        with self._write_lock:
            file_stat = None
            doc = None
            try:
                file_stat = os.stat(self.path)
                with open(self.path, encoding="utf-8") as f:
                    doc = parse(f.read())
            except FileNotFoundError:
                parent = os.path.dirname(self.path)
                if parent:
                    os.makedirs(parent, exist_ok=True)
                doc = document()

            bans = table()
            for addr, entry in sorted(self._bans.items()):
                t = table()
                t["reason"] = entry.reason
                t["end"] = float(entry.end)
                bans[addr] = t
            doc["bans"] = bans

            with open(self.path, "w", encoding="utf-8") as f:
                f.write(dumps(doc))

            if file_stat is not None:
                try:
                    os.chmod(self.path, file_stat.st_mode)
                except Exception:
                    pass

    def get_ban(self, address: str | None) -> BanEntry | None:
        if not address:
            return None
        addr = normalize_address(address)
        if addr in self._permanent:
            return BanEntry()
        entry = self._bans.get(addr)
        if entry is None or entry.expired():
            return None
        return entry

    def is_banned(self, address: str | None) -> bool:
        return self.get_ban(address) is not None

    def handle_ban(self, connection: LinkConnection) -> None:
        """Tell a banned client why, then drop its link."""
        address = None
        try:
            address = connection.remote_address()
        except Exception:
            self.log.debug("Ban target has no address", exc_info=True)

        entry = self.get_ban(address) or BanEntry()
        self.log.warning("Disconnecting banned address=%s reason=%r", address, entry.reason)
        connection.emit(
            EV_BAN,
            {"reason": entry.reason, "end": int(entry.end * 1000)},
        )
        connection.close()

    def add_ban(self, address: str, reason: str = "", hours: float | None = None) -> BanEntry:
        addr = normalize_address(address)
        if not addr:
            raise ValueError("address must not be empty")
        end = PERMANENT if not hours or hours <= 0 else time.time() + float(hours) * 3600
        entry = BanEntry(reason=reason, end=end)
        self._bans[addr] = entry
        return entry

    def remove_ban(self, address: str) -> bool:
        return self._bans.pop(normalize_address(address), None) is not None

    def list_bans(self) -> list[tuple[str, BanEntry]]:
        out = [(a, BanEntry()) for a in sorted(self._permanent)]
        out.extend(sorted(self._bans.items()))
        return out

    def prune_expired(self) -> int:
        now = time.time()
        stale = [a for a, e in self._bans.items() if e.expired(now)]
        for a in stale:
            self._bans.pop(a, None)
        return len(stale)
