from __future__ import annotations

import logging
import os
import signal
import threading
import time

import RNS

from . import __version__
from .bans import BanGuard
from .config import HubRuntimeConfig
from .connection import LinkConnection
from .constants import EV_DISCONNECT
from .resources import ResourceManager
from .envelope import encode
from .rooms import RoomDirectory
from .router import EventRouter
from .session import Phase, Session
from .util import expand_path


class HubService:
    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("bonzid.hub")

        # Reticulum delivers callbacks on its own threads. Every session and
        # room mutation happens under this lock, one event at a time.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        self.directory = RoomDirectory(config.public_prefs, config.private_prefs)
        self.ban_guard = BanGuard(config.ban_file_path, config.banned_addresses)
        self.router = EventRouter(self)
        self.resources = ResourceManager(self)

        self.sessions: dict[RNS.Link, Session] = {}

        # Filled by connections while the lock is held, drained by _flush().
        self._outgoing: list[tuple[RNS.Link, bytes | None]] = []

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None
        self._announce_thread: threading.Thread | None = None

    def fmt_link_id(self, link: RNS.Link) -> str:
        lid = getattr(link, "link_id", None)
        if isinstance(lid, (bytes, bytearray)):
            return bytes(lid).hex()
        h = getattr(link, "hash", None)
        if isinstance(h, (bytes, bytearray)):
            return bytes(h).hex()
        return "-"

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        err = self.ban_guard.load()
        if err:
            self.log.warning("Ban file not loaded path=%s: %s", self.config.ban_file_path, err)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="bonzid-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.log.info(
            "Hub running version=%s dest_name=%s dest_hash=%s",
            __version__,
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
        )
        pub = self.config.public_prefs
        priv = self.config.private_prefs
        self.log.info(
            "Policy public_room_max=%s private_room_max=%s name_limit=%s char_limit=%s rate_limit_events_per_minute=%s",
            pub.room_max,
            priv.room_max,
            pub.name_limit,
            pub.char_limit,
            self.config.rate_limit_events_per_minute,
        )

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "bonzi", "v": 1, "hub": self.config.hub_name})
            )
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        while not self._shutdown.is_set():
            period = float(self.config.announce_period_s)
            if period <= 0:
                time.sleep(1.0)
                continue

            time.sleep(period)
            if self._shutdown.is_set():
                break
            self._announce_once()

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        self._shutdown.set()

        with self._state_lock:
            links = list(self.sessions.keys())
            for sess in list(self.sessions.values()):
                sess.connection.mark_closed()
                sess.disconnect()
            self.sessions.clear()
            self._outgoing.clear()
            stats = self.directory.get_stats()
            self.directory.clear_all()
            self.router.clear_all()
            self.resources.clear_all()

        self.log.info(
            "Hub stopped sessions=%s rooms_left=%s", len(links), stats["rooms_total"]
        )

        for link in links:
            try:
                link.teardown()
            except Exception:
                pass

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def _on_link(self, link: RNS.Link) -> None:
        link.set_packet_callback(lambda data, pkt: self._on_packet(link, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(closed_link))
        link.set_remote_identified_callback(
            lambda identified_link, ident: self._on_remote_identified(
                identified_link, ident
            )
        )
        self.resources.configure_link(link)

        self.log.info("Link established link_id=%s", self.fmt_link_id(link))

    def _on_remote_identified(
        self, link: RNS.Link, identity: RNS.Identity | None
    ) -> None:
        """The link is the handshake: a session exists once the peer identifies."""
        with self._state_lock:
            if link in self.sessions or self._shutdown.is_set():
                return
            conn = LinkConnection(link, self._outgoing)
            sess = Session(
                conn,
                self.directory,
                ban_guard=self.ban_guard,
                palette=self.config.palette,
            )
            if sess.phase is not Phase.DISCONNECTED:
                self.sessions[link] = sess

        self._flush()

    def _on_packet(self, link: RNS.Link, data: bytes) -> None:
        with self._state_lock:
            self.router.route_packet(link, data)

        self._flush()

    def _on_close(self, link: RNS.Link) -> None:
        with self._state_lock:
            self.router.forget(link)
            self.resources.on_link_closed(link)
            sess = self.sessions.pop(link, None)
            if sess is not None:
                sess.connection.mark_closed()
                # Anonymous sessions have no disconnect listener yet.
                if not sess.connection.dispatch(EV_DISCONNECT):
                    sess.disconnect()

        self.log.info(
            "Link closed guid=%s link_id=%s",
            sess.guid if sess is not None else "-",
            self.fmt_link_id(link),
        )
        self._flush()

    def _flush(self) -> None:
        # Packet callbacks can occur concurrently with other link callbacks.
        # Keep state mutations under the shared lock, but avoid holding the
        # lock while sending packets via RNS.
        with self._state_lock:
            outgoing = list(self._outgoing)
            self._outgoing.clear()

        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug("Sending %d payload(s)", len(outgoing))

        for out_link, payload in outgoing:
            if payload is None:
                self.resources.on_link_closed(out_link)
                try:
                    out_link.teardown()
                except Exception:
                    self.log.debug(
                        "Teardown failed link_id=%s", self.fmt_link_id(out_link), exc_info=True
                    )
                continue
            self.resources.deliver(out_link, payload)

    def _packet_would_fit(self, link: RNS.Link, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if hasattr(link, "MDU") and link.MDU is not None:
                return len(payload) <= link.MDU
            pkt = RNS.Packet(link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    def _send_payload(self, link: RNS.Link, payload: bytes) -> None:
        try:
            RNS.Packet(link, payload).send()
        except OSError as e:
            self.log.warning(
                "Send failed link_id=%s bytes=%s err=%s",
                self.fmt_link_id(link),
                len(payload),
                e,
            )
        except Exception:
            self.log.debug(
                "Send failed link_id=%s bytes=%s",
                self.fmt_link_id(link),
                len(payload),
                exc_info=True,
            )
