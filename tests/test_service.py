import hashlib

import pytest

import bonzid.service as service_mod
from bonzid.config import HubRuntimeConfig, RoomPrefs
from bonzid.constants import K_BODY, K_EVENT
from bonzid.envelope import decode, encode, make_envelope, pack_event
from bonzid.session import Phase


class _Packet:
    sent: list = []

    def __init__(self, link, payload) -> None:
        self.link = link
        self.payload = payload

    def send(self) -> None:
        _Packet.sent.append((self.link, self.payload))


class _Resource:
    """Records the envelope as delivered when the transfer starts."""

    COMPLETE = "complete"
    FAILED = "failed"
    started: list = []
    auto_conclude = False

    def __init__(self, data, link, advertise=True, auto_compress=True, callback=None) -> None:
        self.data = data
        self.link = link
        self.callback = callback
        self.status = None
        _Resource.started.append(self)
        _Packet.sent.append((link, data))
        if _Resource.auto_conclude:
            self.conclude()

    def conclude(self, status: str = "complete") -> None:
        self.status = status
        self.callback(self)


@pytest.fixture
def sent(monkeypatch) -> list:
    _Packet.sent = []
    _Resource.started = []
    _Resource.auto_conclude = False
    monkeypatch.setattr(service_mod.RNS, "Packet", _Packet)
    monkeypatch.setattr(service_mod.RNS, "Resource", _Resource)
    return _Packet.sent


@pytest.fixture
def hub(sent) -> service_mod.HubService:
    return service_mod.HubService(
        HubRuntimeConfig(
            rate_limit_events_per_minute=5,
            banned_addresses=("ee" * 16,),
            private_prefs=RoomPrefs(room_max=3),
        )
    )


def _events(sent, link, name=None) -> list:
    out = []
    for out_link, payload in sent:
        if out_link is not link:
            continue
        env = decode(payload)
        if name is None or env[K_EVENT] == name:
            out.append(env.get(K_BODY))
    return out


def _join(hub, make_link, room="lobby", name="tester", **kwargs):
    link = make_link(**kwargs)
    hub._on_remote_identified(link, link.get_remote_identity())
    hub._on_packet(link, pack_event("login", {"room": room, "name": name}))
    return link


def test_session_created_on_identify(hub, make_link, sent) -> None:
    link = make_link()
    hub._on_remote_identified(link, link.get_remote_identity())
    assert hub.sessions[link].phase is Phase.ANONYMOUS
    assert sent == []

    hub._on_remote_identified(link, link.get_remote_identity())
    assert len(hub.sessions) == 1


def test_login_and_talk_reach_the_room(hub, make_link, sent) -> None:
    a = _join(hub, make_link, name="alpha")
    b = _join(hub, make_link, name="beta")
    assert _events(sent, a, "room") == [{"room": "lobby", "isOwner": True, "isPublic": False}]

    hub._on_packet(a, pack_event("talk", {"text": "hi"}))
    talk = {"guid": hub.sessions[a].guid, "text": "hi"}
    assert _events(sent, a, "talk") == [talk]
    assert _events(sent, b, "talk") == [talk]


def test_packets_before_identify_are_ignored(hub, make_link, sent) -> None:
    link = make_link()
    hub._on_packet(link, pack_event("login", {"room": "lobby"}))
    assert sent == []
    assert "lobby" not in hub.directory


def test_bad_packets_and_server_events_are_ignored(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    before = len(sent)

    hub._on_packet(a, b"\xff\x00garbage")
    bad_version = make_envelope("talk", {"text": "x"})
    bad_version[0] = 99
    hub._on_packet(a, encode(bad_version))
    # Clients cannot fake a disconnect or a server event.
    hub._on_packet(a, pack_event("disconnect"))
    hub._on_packet(a, pack_event("ban", {"reason": "x", "end": 0}))

    assert len(sent) == before
    assert hub.sessions[a].logged_in


def test_rate_limit_drops_excess_events(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    for i in range(10):
        hub._on_packet(a, pack_event("talk", {"text": f"m{i}"}))
    # One token went to login.
    assert len(_events(sent, a, "talk")) == 4


def test_link_close_disconnects_session(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    b = _join(hub, make_link)
    guid_a = hub.sessions[a].guid

    hub._on_close(a)
    assert a not in hub.sessions
    assert _events(sent, b, "leave") == [{"guid": guid_a}]

    hub._on_close(b)
    assert len(hub.directory) == 0
    assert hub.sessions == {}


def test_close_of_anonymous_session(hub, make_link) -> None:
    link = make_link()
    hub._on_remote_identified(link, link.get_remote_identity())
    sess = hub.sessions[link]
    hub._on_close(link)
    assert sess.phase is Phase.DISCONNECTED
    assert hub.sessions == {}


def test_banned_identity_is_torn_down(hub, make_link, sent) -> None:
    link = make_link(bytes.fromhex("ee" * 16))
    hub._on_remote_identified(link, link.get_remote_identity())

    assert link not in hub.sessions
    assert _events(sent, link) == [{"reason": "", "end": 0}]
    assert link.torn_down



def test_stop_disconnects_everyone(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    b = _join(hub, make_link)
    hub.stop()
    assert hub.sessions == {}
    assert len(hub.directory) == 0
    assert a.torn_down and b.torn_down


# Reticulum's MDU for an encrypted link.
LINK_MDU = 431


def _names(sent, link) -> list:
    return [decode(p)[K_EVENT] for out_link, p in sent if out_link is link]


def test_oversized_payload_goes_by_resource(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    a.MDU = LINK_MDU
    before = len(sent)

    hub._on_packet(a, pack_event("talk", {"text": "x" * 400}))

    (notice_link, notice), (data_link, data) = sent[before:]
    assert notice_link is a and data_link is a
    body = decode(notice)[K_BODY]
    assert decode(notice)[K_EVENT] == "resource"
    assert body["size"] == len(data) > LINK_MDU
    assert body["sha256"] == hashlib.sha256(data).digest()
    assert decode(data)[K_BODY] == {"guid": hub.sessions[a].guid, "text": "x" * 400}


def test_events_wait_behind_a_resource_in_flight(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    a.MDU = LINK_MDU
    hub._on_packet(a, pack_event("talk", {"text": "y" * 400}))
    hub._on_packet(a, pack_event("talk", {"text": "short"}))

    assert _events(sent, a, "talk")[-1]["text"] == "y" * 400
    assert hub.resources.pending(a) == 1

    (resource,) = _Resource.started
    resource.conclude()
    assert _events(sent, a, "talk")[-1]["text"] == "short"
    assert hub.resources.pending(a) == 0


def test_failed_resource_does_not_stall_the_link(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    a.MDU = LINK_MDU
    hub._on_packet(a, pack_event("talk", {"text": "z" * 400}))
    hub._on_packet(a, pack_event("talk", {"text": "after"}))

    _Resource.started[0].conclude(_Resource.FAILED)
    assert _events(sent, a, "talk")[-1]["text"] == "after"


def test_closing_a_link_drops_its_backlog(hub, make_link, sent) -> None:
    a = _join(hub, make_link)
    a.MDU = LINK_MDU
    hub._on_packet(a, pack_event("talk", {"text": "z" * 400}))
    hub._on_packet(a, pack_event("talk", {"text": "never"}))

    hub._on_close(a)
    _Resource.started[0].conclude()
    assert "never" not in [t["text"] for t in _events(sent, a, "talk")]


def test_resource_transfer_disabled_drops_oversized(make_link, sent) -> None:
    hub = service_mod.HubService(HubRuntimeConfig(enable_resource_transfer=False))
    a = _join(hub, make_link)
    a.MDU = LINK_MDU
    hub._on_packet(a, pack_event("talk", {"text": "x" * 400}))
    hub._on_packet(a, pack_event("talk", {"text": "small"}))

    assert _Resource.started == []
    assert [t["text"] for t in _events(sent, a, "talk")] == ["small"]


def test_full_room_snapshot_and_long_talk_reach_everyone(make_link, sent) -> None:
    _Resource.auto_conclude = True
    hub = service_mod.HubService(HubRuntimeConfig())
    links = []
    for i in range(8):
        link = make_link()
        link.MDU = LINK_MDU
        hub._on_remote_identified(link, link.get_remote_identity())
        hub._on_packet(link, pack_event("login", {"room": "lobby", "name": f"user{i}"}))
        links.append(link)

    newest = links[-1]
    names = _names(sent, newest)
    assert names.index("updateAll") < names.index("room")
    (snapshot,) = _events(sent, newest, "updateAll")
    assert len(snapshot["usersPublic"]) == 8

    hub._on_packet(links[0], pack_event("talk", {"text": "w" * 400}))
    for link in links:
        assert _events(sent, link, "talk") == [
            {"guid": hub.sessions[links[0]].guid, "text": "w" * 400}
        ]
