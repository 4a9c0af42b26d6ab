"""envelope 코덱 테스트."""

import json

import pytest

from modules.signaling import (
    Envelope,
    MessageType,
    ProtocolError,
    RELAY_REQUIRED_FIELDS,
    make_envelope,
    parse_envelope,
    serialize_envelope,
)


def test_parse_join_room():
    env = parse_envelope('{"type": "join-room", "roomId": "R1"}')
    assert env.type == MessageType.JOIN_ROOM
    assert env.get("roomId") == "R1"
    assert env.sender is None


def test_parse_routed_message_keeps_payload():
    raw = {"type": "offer", "to": "B", "offer": {"type": "offer", "sdp": "v=0"}}
    env = parse_envelope(json.dumps(raw))
    assert env.to == "B"
    assert env.get("offer") == {"type": "offer", "sdp": "v=0"}
    assert "to" not in env.payload


def test_from_field_maps_to_sender():
    env = parse_envelope('{"type": "user-disconnected", "from": "B"}', RELAY_REQUIRED_FIELDS)
    assert env.sender == "B"


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2, 3]",
    '{"type": "dance"}',
    '{"roomId": "R1"}',
    '{"type": "join-room"}',
    '{"type": "join-room", "roomId": ""}',
    '{"type": "join-room", "roomId": 5}',
    '{"type": "offer", "offer": {"type": "offer", "sdp": "v=0"}}',
    '{"type": "ice-candidate", "to": "B"}',
])
def test_invalid_client_messages_rejected(raw):
    with pytest.raises(ProtocolError):
        parse_envelope(raw)


def test_relay_types_not_accepted_from_clients():
    with pytest.raises(ProtocolError, match="unexpected message type"):
        parse_envelope('{"type": "connected", "clientId": "A"}')


def test_users_must_be_a_list():
    with pytest.raises(ProtocolError):
        parse_envelope('{"type": "room-users", "users": "A,B"}', RELAY_REQUIRED_FIELDS)


def test_to_wire_omits_unset_fields():
    env = make_envelope(MessageType.ROOM_USERS, users=[])
    assert env.to_wire() == {"type": "room-users", "users": []}


def test_serialize_flat_object_with_from():
    env = make_envelope(MessageType.USER_JOINED, sender="B", roomUsers=["A", "B"])
    assert json.loads(serialize_envelope(env)) == {
        "type": "user-joined", "from": "B", "roomUsers": ["A", "B"],
    }


def test_serialize_keeps_non_ascii_room_names():
    env = Envelope(type=MessageType.JOIN_ROOM, payload={"roomId": "상담실"})
    assert "상담실" in serialize_envelope(env)
    assert parse_envelope(serialize_envelope(env)).get("roomId") == "상담실"


def test_deeply_nested_json_rejected():
    with pytest.raises(ProtocolError, match="invalid json"):
        parse_envelope("[" * 60000)
