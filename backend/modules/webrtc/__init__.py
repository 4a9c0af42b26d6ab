"""WebRTC 모듈 (클라이언트 측).

피어별 협상 상태 머신, 미디어 엔진 어댑터, 시그널링 클라이언트를 제공합니다.

Classes:
    SignalingClient: 릴레이 WebSocket 연결 및 메시지 디스패치
    PeerConnectionManager: 원격 피어별 협상 세션 관리
    NegotiationCoordinator: 피어 하나와의 offer/answer/ICE 상태 머신
    PendingCandidateQueue: remote description 이전에 도착한 candidate 보관
    MediaEngine: 협상 코디네이터가 사용하는 엔진 인터페이스
    AiortcMediaEngine: aiortc 기반 MediaEngine 구현

Config:
    ice_config: ICE 서버 설정
    client_config: 시그널링 클라이언트 설정
"""

from .config import (
    ice_config,
    client_config,
    ICEServerConfig,
    ClientConfig,
)
from .events import (
    PeerEvent,
    LocalDescription,
    LocalCandidate,
    ConnectionStateChanged,
    IceStateChanged,
    NegotiationFailed,
    SessionClosed,
    RoomMembershipChanged,
    RelayError,
)
from .engine import MediaEngine, AiortcMediaEngine, build_rtc_configuration
from .negotiation import (
    NegotiationCoordinator,
    NegotiationState,
    PendingCandidateQueue,
    Role,
    resolve_role,
)
from .peer_manager import PeerConnectionManager
from .client import SignalingClient

__all__ = [
    # Classes
    "SignalingClient",
    "PeerConnectionManager",
    "NegotiationCoordinator",
    "NegotiationState",
    "PendingCandidateQueue",
    "Role",
    "resolve_role",
    "MediaEngine",
    "AiortcMediaEngine",
    "build_rtc_configuration",
    # Events
    "PeerEvent",
    "LocalDescription",
    "LocalCandidate",
    "ConnectionStateChanged",
    "IceStateChanged",
    "NegotiationFailed",
    "SessionClosed",
    "RoomMembershipChanged",
    "RelayError",
    # Config
    "ice_config",
    "client_config",
    "ICEServerConfig",
    "ClientConfig",
]
