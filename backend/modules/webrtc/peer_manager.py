"""WebRTC 피어 연결 관리 모듈 (클라이언트 측).

로컬 클라이언트 하나가 룸의 다른 피어들과 맺는 협상 세션을 관리합니다.
원격 피어마다 NegotiationCoordinator 하나를 두고, 릴레이로부터 받은
envelope를 해당 코디네이터로 전달하며, 코디네이터 이벤트를 다시 릴레이로
보낼 envelope로 변환합니다.

주요 기능:
    - 새로 보이는 피어에 대한 결정적 역할 할당 (작은 ID가 offer 전송)
    - offer/answer/ICE candidate를 피어별 코디네이터로 라우팅
    - 세션 없는 피어의 candidate 보관 (offer 수신 시 코디네이터로 이관)
    - 로컬 description/candidate를 envelope로 변환하여 전송
    - 피어 퇴장 시 세션 종료, 사용자 재시도(retry) 시 세션 재생성
    - 모든 이벤트를 애플리케이션 이벤트 큐로 전달 (상태 표시용)

WebRTC Flow:
    1. room-users / user-joined 수신 → on_peers_visible()
    2. 로컬 ID가 작으면 코디네이터 생성 후 offer 전송 (Initiator)
    3. 로컬 ID가 크면 offer 대기 (Responder, 코디네이터는 offer 수신 시 생성)
    4. answer / ice-candidate 수신 → 해당 코디네이터로 전달
    5. user-disconnected 수신 → 코디네이터 Closed

Session Lifecycle:
    - 코디네이터는 로컬 offer 시작 또는 원격 offer 수신 시에만 생성
    - offer 이전에 도착한 candidate는 엔진 없는 대기열에 보관
    - 로컬에서 닫은 피어의 늦은 candidate는 새 세션이 시작될 때까지 무시
    - Responder가 Stable 상태에서 새 SDP의 offer를 받으면 상대의 재시도로
      보고 세션을 교체

Examples:
    >>> manager = PeerConnectionManager("abc", AiortcMediaEngine, send, events)
    >>> await manager.on_peers_visible(["xyz"])   # abc < xyz → offer 전송
    >>> await manager.on_answer("xyz", answer)
    >>> await manager.retry("xyz")                # 새 세션으로 다시 offer
    >>> await manager.on_user_disconnected("xyz")

See Also:
    negotiation.py: 피어별 협상 상태 머신
    client.py: 릴레이 WebSocket 연결
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from ..signaling.envelope import Envelope, MessageType, make_envelope
from ..signaling.errors import NegotiationError
from .engine import MediaEngine
from .events import LocalCandidate, LocalDescription, PeerEvent, SessionClosed
from .negotiation import (
    NegotiationCoordinator,
    NegotiationState,
    PendingCandidateQueue,
    Role,
    resolve_role,
)

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], MediaEngine]
EnvelopeSender = Callable[[Envelope], Awaitable[None]]


class PeerConnectionManager:
    """원격 피어별 협상 세션을 관리하는 클래스.

    Attributes:
        local_id (str): 릴레이가 할당한 로컬 클라이언트 ID
        coordinators (Dict[str, NegotiationCoordinator]): 피어 ID → 코디네이터
        events (asyncio.Queue): 애플리케이션 이벤트 채널
    """

    def __init__(
        self,
        local_id: str,
        engine_factory: EngineFactory,
        send: EnvelopeSender,
        events: Optional[asyncio.Queue] = None,
    ):
        self.local_id = local_id
        self.engine_factory = engine_factory
        self._send = send
        self.events: asyncio.Queue = events if events is not None else asyncio.Queue()

        # peer_id -> NegotiationCoordinator
        self.coordinators: Dict[str, NegotiationCoordinator] = {}

        # peer_id -> candidates received before any session exists
        self._early_candidates: Dict[str, PendingCandidateQueue] = {}

        # Peers whose session was closed here; late candidates are ignored
        self._closed_peers: Set[str] = set()

    def get(self, peer_id: str) -> Optional[NegotiationCoordinator]:
        return self.coordinators.get(peer_id)

    def peer_ids(self) -> List[str]:
        return list(self.coordinators)

    async def _open(self, peer_id: str) -> NegotiationCoordinator:
        """새 협상 세션을 만들고 보관 중이던 candidate를 넘깁니다."""
        self._closed_peers.discard(peer_id)
        engine = self.engine_factory()

        async def emit(event: PeerEvent, _peer_id: str = peer_id):
            await self._on_coordinator_event(_peer_id, event)

        coordinator = NegotiationCoordinator(self.local_id, peer_id, engine, emit)
        self.coordinators[peer_id] = coordinator
        logger.info(f"[WebRTC] 피어 {peer_id[:8]} 협상 세션 생성")

        parked = self._early_candidates.pop(peer_id, None)
        while parked:
            await coordinator.add_candidate(parked.popleft())
        return coordinator

    # ------------------------------------------------------------
    # 릴레이 이벤트
    # ------------------------------------------------------------

    async def on_peers_visible(self, peer_ids: Iterable[str]) -> List[str]:
        """새로 보이는 피어들에 대해 역할을 정하고 필요하면 offer를 보냅니다.

        이미 세션이 있는 피어와 자기 자신은 건너뜁니다.

        Returns:
            List[str]: 이번 호출로 offer를 시작한 피어 ID 리스트
        """
        initiated = []
        for peer_id in peer_ids:
            if peer_id == self.local_id or peer_id in self.coordinators:
                continue

            try:
                role = resolve_role(self.local_id, peer_id)
            except NegotiationError as e:
                logger.error(f"[WebRTC] 역할 결정 실패: {e}")
                continue

            self._closed_peers.discard(peer_id)
            if role == Role.INITIATOR:
                logger.info(f"[WebRTC] 피어 {peer_id[:8]}에 대해 Initiator - offer 전송")
                coordinator = await self._open(peer_id)
                if await coordinator.start_offer():
                    initiated.append(peer_id)
            else:
                logger.info(f"[WebRTC] 피어 {peer_id[:8]}에 대해 Responder - offer 대기")
        return initiated

    async def on_offer(self, peer_id: str, offer: Dict[str, Any]) -> bool:
        coordinator = self.coordinators.get(peer_id)
        if coordinator is not None and self._is_renegotiation(coordinator, offer):
            logger.info(f"[WebRTC] 피어 {peer_id[:8]}의 새 offer - 세션 교체")
            await self.close_peer(peer_id, reason="renegotiate")
            coordinator = None

        if coordinator is None:
            coordinator = await self._open(peer_id)
        return await coordinator.handle_offer(offer)

    @staticmethod
    def _is_renegotiation(coordinator: NegotiationCoordinator, offer: Any) -> bool:
        """Stable인 Responder 세션에 다른 SDP의 offer가 왔는지 확인합니다."""
        if coordinator.role != Role.RESPONDER or coordinator.state != NegotiationState.STABLE:
            return False
        if not isinstance(offer, dict):
            return False
        previous = coordinator.remote_description or {}
        return offer.get("sdp") != previous.get("sdp")

    async def on_answer(self, peer_id: str, answer: Dict[str, Any]) -> bool:
        coordinator = self.coordinators.get(peer_id)
        if coordinator is None:
            logger.warning(f"[WebRTC] 세션 없는 피어 {peer_id[:8]}의 answer 폐기")
            return False
        return await coordinator.handle_answer(answer)

    async def on_ice_candidate(self, peer_id: str, candidate: Optional[Dict[str, Any]]) -> bool:
        """원격 candidate를 세션으로 전달하거나, 세션이 없으면 보관합니다.

        Returns:
            bool: 엔진에 바로 적용되었으면 True
        """
        if not candidate:
            return False

        coordinator = self.coordinators.get(peer_id)
        if coordinator is not None:
            return await coordinator.add_candidate(candidate)

        if peer_id in self._closed_peers:
            logger.debug(f"[WebRTC] 닫힌 피어 {peer_id[:8]}의 candidate 무시")
            return False

        parked = self._early_candidates.setdefault(peer_id, PendingCandidateQueue())
        parked.append(candidate)
        logger.debug(f"[WebRTC] 피어 {peer_id[:8]} 세션 전 candidate 보관 (대기: {len(parked)})")
        return False

    async def on_user_disconnected(self, peer_id: str) -> None:
        """릴레이의 퇴장 알림: 해당 피어 세션을 종료합니다."""
        await self.close_peer(peer_id, reason="peer-disconnected")

    # ------------------------------------------------------------
    # 사용자 동작
    # ------------------------------------------------------------

    async def retry(self, peer_id: str) -> bool:
        """기존 세션을 닫고 역할을 다시 정해 협상을 새로 시작합니다.

        Initiator면 새 코디네이터로 offer를 다시 보냅니다. Responder면 기존
        세션만 닫고 상대의 새 offer를 기다립니다.

        Returns:
            bool: 새 offer를 보냈으면 True
        """
        await self.close_peer(peer_id, reason="retry")
        initiated = await self.on_peers_visible([peer_id])
        if not initiated:
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} 재시도 - 상대 offer 대기")
        return peer_id in initiated

    async def close_peer(self, peer_id: str, reason: str = "hangup") -> bool:
        """피어 세션을 종료하고 테이블에서 제거합니다. 없는 피어면 False."""
        self._early_candidates.pop(peer_id, None)
        self._closed_peers.add(peer_id)

        coordinator = self.coordinators.pop(peer_id, None)
        if coordinator is None:
            return False
        await coordinator.close(reason)
        return True

    async def close_all(self, reason: str = "hangup") -> None:
        """모든 피어 세션을 종료합니다."""
        for peer_id in list(self.coordinators):
            await self.close_peer(peer_id, reason)
        self._early_candidates.clear()

    # ------------------------------------------------------------
    # 코디네이터 이벤트
    # ------------------------------------------------------------

    async def _on_coordinator_event(self, peer_id: str, event: PeerEvent) -> None:
        if isinstance(event, LocalDescription):
            message_type = MessageType.OFFER if event.kind == "offer" else MessageType.ANSWER
            await self._send(make_envelope(
                message_type, to=peer_id, **{message_type.value: event.description}
            ))

        elif isinstance(event, LocalCandidate):
            await self._send(make_envelope(MessageType.ICE_CANDIDATE, to=peer_id, candidate=event.candidate))

        elif isinstance(event, SessionClosed):
            # Closed through a negotiation failure: drop from the table
            coordinator = self.coordinators.get(peer_id)
            if coordinator is not None and coordinator.is_closed:
                del self.coordinators[peer_id]
                self._closed_peers.add(peer_id)

        try:
            self.events.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"[WebRTC] 이벤트 큐 가득 참 - {type(event).__name__} 폐기")
