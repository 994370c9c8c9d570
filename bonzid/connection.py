"""Connection handle bound to a Reticulum link."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import RNS

from .envelope import pack_event

Listener = Callable[[Any], None]


class LinkConnection:
    """
    One client's bidirectional channel.

    Inbound events are delivered to listeners registered with ``on``.
    Outbound events are encoded and appended to the hub's outgoing queue;
    the hub sends them once it releases its state lock. A ``None`` payload
    in that queue asks the hub to tear the link down.
    """

    def __init__(
        self, link: RNS.Link, outgoing: list[tuple[RNS.Link, bytes | None]]
    ) -> None:
        self.link = link
        self._outgoing = outgoing
        self._listeners: dict[str, list[Listener]] = {}
        self.closed = False

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def has_listener(self, event: str) -> bool:
        return bool(self._listeners.get(event))

    def dispatch(self, event: str, payload: Any = None) -> bool:
        """Call the listeners for ``event``. Returns False if nobody listens."""
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            return False
        for listener in listeners:
            listener(payload)
        return True

    def emit(self, event: str, payload: Any = None) -> None:
        if self.closed:
            return
        self._outgoing.append((self.link, pack_event(event, payload)))

    def remote_address(self) -> str:
        ident = self.link.get_remote_identity()
        if ident is None:
            raise RuntimeError("link is not identified")
        return bytes(ident.hash).hex()

    def remote_port(self) -> str:
        iface = getattr(self.link, "attached_interface", None)
        if iface is None:
            raise RuntimeError("link has no attached interface")
        return str(getattr(iface, "name", None) or iface)

    def close(self) -> None:
        """Tear the link down after everything already queued has been sent."""
        if self.closed:
            return
        self.closed = True
        self._outgoing.append((self.link, None))

    def mark_closed(self) -> None:
        """The link went away underneath us; stop queueing for it."""
        self.closed = True

    def __repr__(self) -> str:
        lid = getattr(self.link, "link_id", None)
        lid_s = bytes(lid).hex() if isinstance(lid, (bytes, bytearray)) else "-"
        return f"<LinkConnection link_id={lid_s}>"
