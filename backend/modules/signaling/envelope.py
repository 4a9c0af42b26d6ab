"""시그널링 envelope 코덱.

WebSocket 텍스트 프레임 하나에 JSON envelope 하나를 싣습니다.
envelope는 공통 필드(type, from, to)와 타입별 필드(payload)로 구성되며,
와이어 상에서는 하나의 평탄한 JSON 객체로 직렬화됩니다.

Examples:
    >>> env = parse_envelope('{"type": "join-room", "roomId": "R1"}')
    >>> env.type, env.payload
    (<MessageType.JOIN_ROOM: 'join-room'>, {'roomId': 'R1'})
    >>> serialize_envelope(Envelope(type=MessageType.USER_DISCONNECTED, sender="B"))
    '{"type": "user-disconnected", "from": "B"}'
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import ProtocolError


class MessageType(str, Enum):
    """와이어 메시지 종류."""

    # client -> relay
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    GET_USERS = "get-users"

    # point-to-point (both directions)
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"

    # relay -> client
    CONNECTED = "connected"
    ROOM_USERS = "room-users"
    USER_JOINED = "user-joined"
    USER_DISCONNECTED = "user-disconnected"
    USERS_LIST = "users-list"
    ERROR = "error"


# Point-to-point message type -> name of the field carrying its payload
ROUTED_FIELDS: Dict[MessageType, str] = {
    MessageType.OFFER: "offer",
    MessageType.ANSWER: "answer",
    MessageType.ICE_CANDIDATE: "candidate",
}

# Fields a client must send for each client->relay type
CLIENT_REQUIRED_FIELDS: Dict[MessageType, Tuple[str, ...]] = {
    MessageType.JOIN_ROOM: ("roomId",),
    MessageType.LEAVE_ROOM: (),
    MessageType.GET_USERS: (),
    MessageType.OFFER: ("to", "offer"),
    MessageType.ANSWER: ("to", "answer"),
    MessageType.ICE_CANDIDATE: ("to", "candidate"),
}

# Fields the relay always sends for each relay->client type
RELAY_REQUIRED_FIELDS: Dict[MessageType, Tuple[str, ...]] = {
    MessageType.CONNECTED: ("clientId",),
    MessageType.ROOM_USERS: ("users",),
    MessageType.USER_JOINED: ("from", "roomUsers"),
    MessageType.USER_DISCONNECTED: ("from",),
    MessageType.USERS_LIST: ("users",),
    MessageType.ERROR: ("message",),
    MessageType.OFFER: ("from", "offer"),
    MessageType.ANSWER: ("from", "answer"),
    MessageType.ICE_CANDIDATE: ("from", "candidate"),
}

_ENVELOPE_KEYS = ("type", "from", "to")


class Envelope(BaseModel):
    """시그널링 envelope.

    Attributes:
        type (MessageType): 메시지 종류
        sender (Optional[str]): 발신 클라이언트 ID (와이어 필드명 ``from``)
        to (Optional[str]): 수신 클라이언트 ID (point-to-point 메시지만)
        payload (Dict[str, Any]): 타입별 필드 (roomId, offer, users 등)
    """

    model_config = ConfigDict(populate_by_name=True)

    type: MessageType
    sender: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """payload 필드를 조회합니다."""
        return self.payload.get(key, default)

    def to_wire(self) -> Dict[str, Any]:
        """와이어 형식(평탄한 dict)으로 변환합니다. None 필드는 생략됩니다."""
        wire: Dict[str, Any] = {"type": self.type.value}
        if self.sender is not None:
            wire["from"] = self.sender
        if self.to is not None:
            wire["to"] = self.to
        for key, value in self.payload.items():
            if key not in _ENVELOPE_KEYS:
                wire[key] = value
        return wire


def parse_envelope(
    raw: Union[str, bytes, Dict[str, Any]],
    required: Dict[MessageType, Tuple[str, ...]] = CLIENT_REQUIRED_FIELDS,
) -> Envelope:
    """와이어 메시지를 Envelope로 파싱합니다.

    Args:
        raw: JSON 문자열/바이트 또는 이미 디코딩된 dict
        required: 타입별 필수 필드 테이블. 테이블에 없는 타입은
            알 수 없는 타입으로 거부됩니다.

    Returns:
        Envelope: 검증된 envelope

    Raises:
        ProtocolError: JSON이 아니거나, 객체가 아니거나, 타입을 모르거나,
            필수 필드가 없거나 형식이 잘못된 경우
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as e:
            # Deeply nested input overflows the decoder with RecursionError
            raise ProtocolError(f"invalid json: {e}") from None
    else:
        data = raw

    if not isinstance(data, dict):
        raise ProtocolError("envelope must be a JSON object")

    type_value = data.get("type")
    try:
        message_type = MessageType(type_value)
    except ValueError:
        raise ProtocolError(f"unknown message type: {type_value!r}") from None

    if message_type not in required:
        raise ProtocolError(f"unexpected message type: {message_type.value}")

    for field_name in required[message_type]:
        if data.get(field_name) in (None, ""):
            raise ProtocolError(f"'{message_type.value}' requires field '{field_name}'")

    for field_name in ("roomId", "to", "from", "clientId"):
        if field_name in data and data[field_name] is not None and not isinstance(data[field_name], str):
            raise ProtocolError(f"field '{field_name}' must be a string")

    for field_name in ("users", "roomUsers"):
        if field_name in data and not isinstance(data[field_name], list):
            raise ProtocolError(f"field '{field_name}' must be a list")

    payload = {k: v for k, v in data.items() if k not in _ENVELOPE_KEYS}
    return Envelope(type=message_type, sender=data.get("from"), to=data.get("to"), payload=payload)


def serialize_envelope(envelope: Envelope) -> str:
    """Envelope를 JSON 문자열로 직렬화합니다."""
    return json.dumps(envelope.to_wire(), ensure_ascii=False)


def make_envelope(message_type: MessageType, sender: str = None, to: str = None, **payload: Any) -> Envelope:
    """키워드 인자로 Envelope를 생성하는 헬퍼."""
    return Envelope(type=message_type, sender=sender, to=to, payload=payload)
