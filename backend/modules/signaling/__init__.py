"""시그널링 릴레이 모듈.

룸 관리, 클라이언트 연결 관리, envelope 코덱, 릴레이를 제공합니다.

Classes:
    SignalingRelay: 룸 기반 envelope 중계
    RoomManager: 룸 및 멤버 관리 (RoomTable)
    ConnectionRegistry: 클라이언트 ID → 연결 매핑
    ClientConnection: 클라이언트 전송 핸들과 제한된 송신 큐
    Envelope: 시그널링 메시지

Config:
    relay_config: 릴레이 설정
"""

from .errors import (
    SignalingError,
    TransportError,
    ProtocolError,
    NegotiationError,
    RoomError,
)
from .envelope import (
    Envelope,
    MessageType,
    ROUTED_FIELDS,
    CLIENT_REQUIRED_FIELDS,
    RELAY_REQUIRED_FIELDS,
    parse_envelope,
    serialize_envelope,
    make_envelope,
)
from .room_manager import RoomManager, Member
from .registry import ConnectionRegistry, ClientConnection
from .relay import SignalingRelay
from .config import relay_config, RelayConfig

__all__ = [
    # Errors
    "SignalingError",
    "TransportError",
    "ProtocolError",
    "NegotiationError",
    "RoomError",
    # Envelope
    "Envelope",
    "MessageType",
    "ROUTED_FIELDS",
    "CLIENT_REQUIRED_FIELDS",
    "RELAY_REQUIRED_FIELDS",
    "parse_envelope",
    "serialize_envelope",
    "make_envelope",
    # Classes
    "RoomManager",
    "Member",
    "ConnectionRegistry",
    "ClientConnection",
    "SignalingRelay",
    # Config
    "relay_config",
    "RelayConfig",
]
