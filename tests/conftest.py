import os

import pytest

from bonzid.config import RangePrefs, RoomPrefs
from bonzid.connection import LinkConnection
from bonzid.envelope import decode
from bonzid.constants import K_BODY, K_EVENT
from bonzid.rooms import RoomDirectory
from bonzid.session import Session


class FakeIdentity:
    def __init__(self, h: bytes) -> None:
        self.hash = h


class FakeInterface:
    name = "TestInterface"


class FakeLink:
    """Just enough of RNS.Link for the hub and connection code."""

    MDU = 4096

    def __init__(self, identity_hash: bytes | None = None, identified: bool = True) -> None:
        self.link_id = os.urandom(16)
        self._identity = FakeIdentity(identity_hash or os.urandom(16)) if identified else None
        self.attached_interface = FakeInterface()
        self.torn_down = False

    def get_remote_identity(self):
        return self._identity

    def teardown(self) -> None:
        self.torn_down = True


def decode_events(outgoing, link) -> list[tuple[str, object]]:
    out = []
    for out_link, payload in outgoing:
        if out_link is not link or payload is None:
            continue
        env = decode(payload)
        out.append((env[K_EVENT], env.get(K_BODY)))
    return out


class Client:
    """A session on a fake link, with a decoded view of what it was sent."""

    def __init__(self, directory: RoomDirectory, outgoing: list, **kwargs) -> None:
        self.link = FakeLink(kwargs.pop("identity_hash", None))
        self.outgoing = outgoing
        self.conn = LinkConnection(self.link, outgoing)
        self.session = Session(self.conn, directory, **kwargs)

    @property
    def guid(self) -> str:
        return self.session.guid

    def send(self, event: str, body=None) -> bool:
        return self.conn.dispatch(event, body)

    def events(self, name: str | None = None) -> list:
        evs = decode_events(self.outgoing, self.link)
        if name is None:
            return evs
        return [body for ev, body in evs if ev == name]


@pytest.fixture
def outgoing() -> list:
    return []


@pytest.fixture
def directory() -> RoomDirectory:
    return RoomDirectory(
        public_prefs=RoomPrefs(room_max=2),
        private_prefs=RoomPrefs(
            room_max=2,
            pitch=RangePrefs(10, 20, 15),
            speed=RangePrefs(100, 200, "random"),
            godword="letmein",
        ),
    )


@pytest.fixture
def make_client(directory, outgoing):
    def _make(**kwargs) -> Client:
        return Client(directory, outgoing, **kwargs)

    return _make


@pytest.fixture
def logged_in(make_client):
    """Factory: a client already logged in to ``room`` (public if empty)."""

    def _make(room: str = "lobby", name: str = "tester", **kwargs) -> Client:
        c = make_client(**kwargs)
        c.send("login", {"room": room, "name": name})
        assert c.session.logged_in
        return c

    return _make


@pytest.fixture
def client_in(outgoing):
    """Factory: a client attached to an explicitly built directory."""

    def _make(d: RoomDirectory, **kwargs) -> Client:
        return Client(d, outgoing, **kwargs)

    return _make


@pytest.fixture
def make_link():
    return FakeLink
