"""Outbound delivery for envelopes larger than one link packet."""

from __future__ import annotations

import hashlib
import logging
import os
from collections import deque
from typing import TYPE_CHECKING

import RNS

from .constants import EV_RESOURCE
from .envelope import pack_event

if TYPE_CHECKING:
    from .service import HubService


class ResourceManager:
    """
    Sends queued payloads to links, in order.

    Payloads that fit the link MDU go out as packets. Larger ones are
    announced with a ``resource{id, size, sha256}`` event and then sent as an
    ``RNS.Resource`` whose data is the full envelope. While a resource is in
    flight on a link, later payloads for that link wait in a backlog so the
    client sees events in the order they were emitted.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("bonzid.resources")

        # Links with a pump running or a resource in flight.
        self._busy: set[RNS.Link] = set()
        self._backlog: dict[RNS.Link, deque[bytes]] = {}

    def configure_link(self, link: RNS.Link) -> None:
        """Clients never send resources; refuse any that are advertised."""
        try:
            link.set_resource_strategy(RNS.Link.ACCEPT_NONE)
        except Exception as e:
            self.log.warning(
                "Failed to set resource strategy link_id=%s: %s",
                self.hub.fmt_link_id(link),
                e,
            )

    def on_link_closed(self, link: RNS.Link) -> None:
        with self.hub._state_lock:
            self._busy.discard(link)
            self._backlog.pop(link, None)

    def clear_all(self) -> None:
        with self.hub._state_lock:
            self._busy.clear()
            self._backlog.clear()

    def pending(self, link: RNS.Link) -> int:
        with self.hub._state_lock:
            return len(self._backlog.get(link, ()))

    def deliver(self, link: RNS.Link, payload: bytes) -> None:
        """Send ``payload`` now, or after whatever is still in flight on ``link``.

        Must be called without the state lock held.
        """
        with self.hub._state_lock:
            self._backlog.setdefault(link, deque()).append(payload)
            if link in self._busy:
                return
            self._busy.add(link)
        self._pump(link)

    def _pump(self, link: RNS.Link) -> None:
        while True:
            with self.hub._state_lock:
                if link not in self._busy:
                    return
                queue = self._backlog.get(link)
                if not queue:
                    self._busy.discard(link)
                    self._backlog.pop(link, None)
                    return
                payload = queue.popleft()

            if self.hub._packet_would_fit(link, payload):
                self.hub._send_payload(link, payload)
                continue

            if self.send_via_resource(link, payload):
                # _resource_concluded resumes the pump.
                return

    def send_via_resource(self, link: RNS.Link, payload: bytes) -> bool:
        """
        Announce and start a Resource transfer of ``payload``.
        Returns True if the transfer was started, False if the payload was dropped.
        """
        size = len(payload)
        if not self.hub.config.enable_resource_transfer:
            self.log.warning(
                "Payload would not fit MDU and resource transfer is disabled; dropping link_id=%s bytes=%s",
                self.hub.fmt_link_id(link),
                size,
            )
            return False
        if size > self.hub.config.max_resource_bytes:
            self.log.warning(
                "Payload too large for resource transfer: %s > %s link_id=%s",
                size,
                self.hub.config.max_resource_bytes,
                self.hub.fmt_link_id(link),
            )
            return False

        rid = os.urandom(8)
        notice = pack_event(
            EV_RESOURCE,
            {"id": rid, "size": size, "sha256": hashlib.sha256(payload).digest()},
        )
        try:
            RNS.Packet(link, notice).send()
        except Exception as e:
            self.log.warning(
                "Failed to send resource notice link_id=%s: %s",
                self.hub.fmt_link_id(link),
                e,
            )
            return False

        try:
            resource = RNS.Resource(
                payload,
                link,
                advertise=True,
                auto_compress=False,
                callback=self._resource_concluded,
            )
        except Exception as e:
            self.log.warning(
                "Failed to create resource link_id=%s: %s",
                self.hub.fmt_link_id(link),
                e,
            )
            return False

        self.log.debug(
            "Sent resource link_id=%s rid=%s size=%s",
            self.hub.fmt_link_id(link),
            rid.hex(),
            size,
        )
        return True

    def _resource_concluded(self, resource: RNS.Resource) -> None:
        link = resource.link
        if resource.status != RNS.Resource.COMPLETE:
            self.log.warning(
                "Resource transfer failed link_id=%s status=%s",
                self.hub.fmt_link_id(link),
                resource.status,
            )

        self._pump(link)
