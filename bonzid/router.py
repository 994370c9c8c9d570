from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import RNS

from .constants import CLIENT_EVENTS
from .envelope import unpack_event

if TYPE_CHECKING:
    from .service import HubService


@dataclass
class _RateState:
    """Token bucket state for rate limiting."""

    tokens: float
    last_refill: float


class EventRouter:
    """
    Turns inbound packets into session events.

    This class is responsible for:
    - Decoding and validating envelopes
    - Per-link rate limiting (token bucket)
    - Rejecting events clients are not allowed to send
    - Dispatching to the listeners registered on the link's connection
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("bonzid.router")
        self._rate: dict[RNS.Link, _RateState] = {}

    def forget(self, link: RNS.Link) -> None:
        self._rate.pop(link, None)

    def clear_all(self) -> None:
        self._rate.clear()

    def refill_and_take(self, link: RNS.Link, cost: float = 1.0) -> bool:
        """
        Token bucket rate limiting.

        Refills tokens based on elapsed time and attempts to take `cost` tokens.
        Returns True if tokens were available and taken, False if rate limited.

        Must be called with state lock held.
        """
        per_min = float(max(1, int(self.hub.config.rate_limit_events_per_minute)))
        now = time.monotonic()
        state = self._rate.get(link)
        if state is None:
            state = _RateState(tokens=per_min, last_refill=now)
            self._rate[link] = state

        rate_per_s = per_min / 60.0
        elapsed = max(0.0, now - state.last_refill)
        state.tokens = min(per_min, state.tokens + elapsed * rate_per_s)
        state.last_refill = now

        if state.tokens < cost:
            return False

        state.tokens -= cost
        return True

    def route_packet(self, link: RNS.Link, data: bytes) -> None:
        """
        Main entry point for an incoming packet.

        This method should be called with the state lock held.
        """
        sess = self.hub.sessions.get(link)
        if sess is None:
            # Per link: nothing is accepted until the remote has identified.
            return

        if not self.refill_and_take(link, 1.0):
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug("Rate limited guid=%s link_id=%s", sess.guid, self.hub.fmt_link_id(link))
            return

        try:
            event, body = unpack_event(data)
        except Exception as e:
            self.log.debug(
                "Bad packet guid=%s link_id=%s bytes=%s err=%s",
                sess.guid,
                self.hub.fmt_link_id(link),
                len(data),
                e,
            )
            return

        if event not in CLIENT_EVENTS:
            self.log.debug("Ignoring event=%r from guid=%s", event, sess.guid)
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX guid=%s link_id=%s event=%s bytes=%s body_type=%s",
                sess.guid,
                self.hub.fmt_link_id(link),
                event,
                len(data),
                type(body).__name__,
            )

        sess.connection.dispatch(event, body)
