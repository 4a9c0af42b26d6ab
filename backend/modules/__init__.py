"""Backend modules package.

이 패키지는 WebRTC 시그널링 시스템의 핵심 모듈을 포함합니다.

Modules:
    signaling: 릴레이 서버 (envelope, 룸, 연결 레지스트리)
    webrtc: 클라이언트 측 협상 상태 머신 및 시그널링 클라이언트
"""

from .signaling import SignalingRelay, RoomManager, parse_envelope, MessageType
from .webrtc import SignalingClient, PeerConnectionManager, NegotiationCoordinator

__all__ = [
    # Signaling relay
    "SignalingRelay",
    "RoomManager",
    "parse_envelope",
    "MessageType",
    # WebRTC client
    "SignalingClient",
    "PeerConnectionManager",
    "NegotiationCoordinator",
]
