"""피어 이벤트 정의.

NegotiationCoordinator와 SignalingClient가 애플리케이션 계층에 전달하는
이벤트 variant들입니다. 문자열 이벤트 이름 대신 타입으로 구분합니다.

Examples:
    >>> event = await client.events.get()
    >>> if isinstance(event, ConnectionStateChanged) and event.state == "failed":
    ...     show_retry_button(event.peer_id)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PeerEvent:
    """모든 이벤트의 기본 클래스."""


@dataclass(frozen=True)
class LocalDescription(PeerEvent):
    """로컬 offer/answer가 설정되어 원격 피어로 보내야 함."""
    peer_id: str
    description: Dict[str, Any]

    @property
    def kind(self) -> str:
        return self.description.get("type", "")


@dataclass(frozen=True)
class LocalCandidate(PeerEvent):
    """로컬 ICE candidate가 수집되어 원격 피어로 보내야 함."""
    peer_id: str
    candidate: Dict[str, Any]


@dataclass(frozen=True)
class ConnectionStateChanged(PeerEvent):
    """미디어 엔진의 연결 상태 변경 (표시용).

    ``failed``도 세션을 닫지 않으며, 재시도/종료는 사용자가 결정합니다.
    """
    peer_id: str
    state: str


@dataclass(frozen=True)
class IceStateChanged(PeerEvent):
    """ICE 연결 상태 변경 (표시용). ``failed``도 세션을 닫지 않음."""
    peer_id: str
    state: str


@dataclass(frozen=True)
class NegotiationFailed(PeerEvent):
    """협상 실패 (description 거부 등). 세션은 Closed로 전이됨."""
    peer_id: str
    error: str


@dataclass(frozen=True)
class SessionClosed(PeerEvent):
    """협상 세션 종료."""
    peer_id: str
    reason: str


@dataclass(frozen=True)
class RoomMembershipChanged(PeerEvent):
    """룸 멤버 목록 갱신 (자신 제외)."""
    users: List[str] = field(default_factory=list)
    joined: Optional[str] = None
    left: Optional[str] = None


@dataclass(frozen=True)
class RelayError(PeerEvent):
    """릴레이가 보낸 ``error`` 메시지."""
    message: str
