"""SignalingClient 테스트 (릴레이 메시지 디스패치)."""

import json

import pytest
from websockets.exceptions import ConnectionClosed

from conftest import FakeMediaEngine
from modules.signaling import TransportError
from modules.webrtc import (
    NegotiationState,
    RelayError,
    RoomMembershipChanged,
    SignalingClient,
)
from modules.webrtc import client as client_module


class FakeClientSocket:
    """websockets 클라이언트 연결 대용."""

    def __init__(self, incoming=()):
        self.sent = []
        self.incoming = list(incoming)
        self.closed = False
        self.fail = False

    async def send(self, text):
        if self.fail:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(text))

    async def recv(self):
        return self.incoming.pop(0)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while self.incoming:
            yield self.incoming.pop(0)

    def of_type(self, message_type):
        return [m for m in self.sent if m["type"] == message_type]


def drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.fixture
def client():
    client = SignalingClient("ws://relay.test/ws", engine_factory=FakeMediaEngine)
    client.ws = FakeClientSocket()
    client.bind("abc")
    return client


async def test_connect_reads_client_id(monkeypatch):
    socket = FakeClientSocket(incoming=['{"type": "connected", "clientId": "abc"}'])

    async def fake_connect(url, open_timeout=None):
        assert url == "ws://relay.test/ws"
        return socket

    monkeypatch.setattr(client_module.websockets, "connect", fake_connect)

    client = SignalingClient("ws://relay.test/ws", engine_factory=FakeMediaEngine)
    assert await client.connect() == "abc"
    assert client.peers.local_id == "abc"


async def test_connect_refused(monkeypatch):
    async def refused(url, open_timeout=None):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(client_module.websockets, "connect", refused)

    with pytest.raises(TransportError):
        await SignalingClient("ws://relay.test/ws").connect()


async def test_join_room_sends_request(client):
    assert await client.join_room("R1") is True
    assert client.ws.sent == [{"type": "join-room", "roomId": "R1"}]
    assert client.room_id == "R1"


async def test_room_users_starts_offers_as_initiator(client):
    await client.handle_raw('{"type": "room-users", "users": ["xyz"]}')

    assert client.users == ["xyz"]
    offers = client.ws.of_type("offer")
    assert offers[0]["to"] == "xyz"
    assert client.peers.get("xyz").state == NegotiationState.HAVE_LOCAL_OFFER
    assert RoomMembershipChanged(users=["xyz"]) in drain(client.events)


async def test_user_joined_with_smaller_id_waits(client):
    await client.handle_raw('{"type": "user-joined", "from": "aaa", "roomUsers": ["abc", "aaa"]}')

    assert client.users == ["aaa"]
    assert client.ws.of_type("offer") == []
    assert RoomMembershipChanged(users=["aaa"], joined="aaa") in drain(client.events)


async def test_offer_is_answered(client):
    offer = {"type": "offer", "sdp": "v=0"}
    await client.handle_raw(json.dumps({"type": "offer", "from": "aaa", "offer": offer}))

    answers = client.ws.of_type("answer")
    assert answers[0]["to"] == "aaa"
    assert answers[0]["answer"]["type"] == "answer"


async def test_user_disconnected_closes_peer(client):
    await client.handle_raw('{"type": "room-users", "users": ["xyz"]}')
    await client.handle_raw('{"type": "user-disconnected", "from": "xyz"}')

    assert client.users == []
    assert client.peers.get("xyz") is None


async def test_relay_error_published(client):
    await client.handle_raw('{"type": "error", "message": "unknown message type"}')
    assert RelayError("unknown message type") in drain(client.events)


async def test_malformed_relay_message_ignored(client):
    await client.handle_raw("garbage")
    await client.handle_raw('{"type": "room-users"}')
    assert client.ws.sent == []
    assert drain(client.events) == []


async def test_send_after_connection_closed(client):
    client.ws.fail = True
    assert await client.get_users() is False


async def test_send_without_connection():
    client = SignalingClient("ws://relay.test/ws", engine_factory=FakeMediaEngine)
    assert await client.get_users() is False


async def test_leave_room_closes_all_peers(client):
    await client.handle_raw('{"type": "room-users", "users": ["xyz", "xzz"]}')
    assert await client.leave_room() is True

    assert client.peers.peer_ids() == []
    assert client.ws.sent[-1] == {"type": "leave-room"}
    assert client.room_id is None


async def test_retry_resends_offer(client):
    await client.handle_raw('{"type": "room-users", "users": ["xyz"]}')
    old = client.peers.get("xyz")

    assert await client.retry("xyz") is True

    assert old.is_closed
    assert len(client.ws.of_type("offer")) == 2
    assert client.peers.get("xyz").state == NegotiationState.HAVE_LOCAL_OFFER


async def test_retry_as_responder_sends_nothing(client):
    offer = {"type": "offer", "sdp": "v=0"}
    await client.handle_raw(json.dumps({"type": "offer", "from": "aaa", "offer": offer}))

    assert await client.retry("aaa") is False
    assert client.ws.of_type("offer") == []
    assert client.peers.get("aaa") is None


async def test_retry_before_connect():
    client = SignalingClient("ws://relay.test/ws", engine_factory=FakeMediaEngine)
    assert await client.retry("xyz") is False


async def test_run_processes_until_closed(client):
    client.ws.incoming = [
        '{"type": "room-users", "users": []}',
        '{"type": "user-joined", "from": "xyz", "roomUsers": ["abc", "xyz"]}',
    ]
    await client.run()

    assert client.users == ["xyz"]
    assert client.ws.of_type("offer")[0]["to"] == "xyz"


async def test_close(client):
    socket = client.ws
    await client.handle_raw('{"type": "room-users", "users": ["xyz"]}')
    await client.close()

    assert socket.closed
    assert client.ws is None
    assert client.peers.peer_ids() == []
