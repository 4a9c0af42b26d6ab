"""피어별 offer/answer/ICE 협상 상태 머신.

(로컬 클라이언트, 원격 피어) 쌍마다 NegotiationCoordinator 하나가 존재하며,
릴레이로부터 받은 envelope와 미디어 엔진 콜백을 받아 협상 상태를 진행합니다.

State Machine:
    Idle ──start_offer()──────────────> HaveLocalOffer ──answer──> Stable
      └───inbound offer──> HaveRemoteOffer ──local answer────────> Stable
    any ──close() / 복구 불가 협상 오류──> Closed (terminal)

Role Assignment:
    - 두 클라이언트 ID를 문자열로 비교하여 작은 쪽이 Initiator (offer 전송)
    - 추가 왕복 없이 양쪽이 동시에 offer를 보내는 glare를 방지

ICE Candidate Buffering:
    - remote description이 없으면 PendingCandidateQueue에 보관 (세션 동안 무제한)
    - remote description 설정 직후 FIFO 순서로 모두 적용
    - 이후 도착한 candidate는 버퍼링 없이 즉시 적용
    - candidate 하나의 적용 실패는 로그만 남기고 나머지를 계속 적용

Concurrency:
    - 엔진 호출(create/set description, add candidate)은 asyncio.Lock으로 직렬화
    - close()는 잠금을 기다리지 않으며, 모든 엔진 호출 직후 Closed 여부를 확인

Examples:
    >>> coordinator = NegotiationCoordinator("abc", "xyz", engine, emit)
    >>> resolve_role("abc", "xyz")
    <Role.INITIATOR: 'initiator'>
    >>> await coordinator.start_offer()      # Idle -> HaveLocalOffer
    >>> await coordinator.handle_answer(answer)  # HaveLocalOffer -> Stable
"""
import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from ..signaling.errors import NegotiationError
from .engine import MediaEngine
from .events import (
    ConnectionStateChanged,
    IceStateChanged,
    LocalCandidate,
    LocalDescription,
    NegotiationFailed,
    PeerEvent,
    SessionClosed,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[PeerEvent], Awaitable[None]]


class NegotiationState(str, Enum):
    IDLE = "idle"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    STABLE = "stable"
    CLOSED = "closed"


class Role(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"
    UNRESOLVED = "unresolved"


def resolve_role(local_id: str, remote_id: str) -> Role:
    """두 클라이언트 ID로 협상 역할을 결정합니다.

    사전순으로 작은 ID가 Initiator입니다. 도착 순서나 재시도와 무관한
    순수 함수입니다.

    Raises:
        NegotiationError: 두 ID가 같은 경우 (역할을 정할 수 없음)
    """
    if local_id == remote_id:
        raise NegotiationError(f"cannot negotiate with own id {local_id!r}", peer_id=remote_id)
    return Role.INITIATOR if local_id < remote_id else Role.RESPONDER


class PendingCandidateQueue:
    """remote description이 설정되기 전에 도착한 ICE candidate 버퍼."""

    def __init__(self):
        self._items: Deque[Dict[str, Any]] = deque()

    def append(self, candidate: Dict[str, Any]) -> None:
        self._items.append(candidate)

    def popleft(self) -> Dict[str, Any]:
        return self._items.popleft()

    def clear(self) -> int:
        """버퍼를 비우고 버려진 candidate 수를 반환합니다."""
        count = len(self._items)
        self._items.clear()
        return count

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


def _validate_description(description: Any, expected_type: str, peer_id: str) -> Dict[str, Any]:
    if not isinstance(description, dict):
        raise NegotiationError(f"{expected_type} must be an object", peer_id=peer_id)
    if description.get("type") != expected_type:
        raise NegotiationError(
            f"expected description type '{expected_type}', got {description.get('type')!r}",
            peer_id=peer_id,
        )
    if not isinstance(description.get("sdp"), str) or not description["sdp"]:
        raise NegotiationError(f"{expected_type} has no sdp", peer_id=peer_id)
    return description


class NegotiationCoordinator:
    """원격 피어 하나와의 협상 세션.

    Attributes:
        local_id (str): 로컬 클라이언트 ID
        peer_id (str): 원격 피어 ID
        engine (MediaEngine): 미디어 엔진
        state (NegotiationState): 현재 협상 상태
        role (Role): 협상 역할
        local_description (Optional[dict]): 설정된 로컬 description
        remote_description (Optional[dict]): 설정된 원격 description
        pending (PendingCandidateQueue): 대기 중인 원격 ICE candidate
    """

    def __init__(self, local_id: str, peer_id: str, engine: MediaEngine, emit: EventSink):
        self.local_id = local_id
        self.peer_id = peer_id
        self.engine = engine
        self._emit = emit

        self.state = NegotiationState.IDLE
        self.role = Role.UNRESOLVED
        self.local_description: Optional[Dict[str, Any]] = None
        self.remote_description: Optional[Dict[str, Any]] = None
        self.pending = PendingCandidateQueue()
        self.close_reason: Optional[str] = None

        # Serializes engine calls for this peer
        self._lock = asyncio.Lock()

        engine.on_connection_state_change(self._on_connection_state_change)
        engine.on_ice_candidate(self._on_local_candidate)
        engine.on_ice_state_change(self._on_ice_state_change)

    @property
    def is_closed(self) -> bool:
        return self.state == NegotiationState.CLOSED

    def _tag(self) -> str:
        return f"{self.local_id[:8]}->{self.peer_id[:8]}"

    # ------------------------------------------------------------
    # offer / answer
    # ------------------------------------------------------------

    async def start_offer(self) -> bool:
        """offer를 생성하여 로컬 description으로 설정합니다 (Idle → HaveLocalOffer).

        Returns:
            bool: offer가 설정되어 전송 이벤트가 발생했으면 True
        """
        async with self._lock:
            if self.state != NegotiationState.IDLE:
                logger.warning(f"[Negotiation] {self._tag()} offer 생성 무시 (state={self.state.value})")
                return False

            self.role = Role.INITIATOR
            try:
                offer = await self.engine.create_offer()
                if self.is_closed:
                    return False
                applied = await self.engine.set_local_description(offer)
                if self.is_closed:
                    return False
            except Exception as e:
                await self._fail(e)
                return False

            self.local_description = applied or offer
            self.state = NegotiationState.HAVE_LOCAL_OFFER
            logger.info(f"[Negotiation] {self._tag()} offer 설정 완료, answer 대기")

        await self._emit(LocalDescription(self.peer_id, self.local_description))
        return True

    async def handle_offer(self, offer: Dict[str, Any]) -> bool:
        """원격 offer를 적용하고 answer를 생성합니다.

        Idle → HaveRemoteOffer → Stable. Idle이 아닐 때 도착한 offer는 버립니다:
        HaveLocalOffer에서는 먼저 보낸 로컬 offer가 우선하고 (glare),
        그 외 상태에서는 중복 offer로 취급합니다.

        Returns:
            bool: answer가 설정되어 전송 이벤트가 발생했으면 True
        """
        async with self._lock:
            if self.state == NegotiationState.HAVE_LOCAL_OFFER:
                logger.warning(f"[Negotiation] {self._tag()} glare: 로컬 offer 우선, 원격 offer 폐기")
                return False
            if self.state != NegotiationState.IDLE:
                logger.warning(f"[Negotiation] {self._tag()} offer 폐기 (state={self.state.value})")
                return False

            self.role = Role.RESPONDER
            try:
                offer = _validate_description(offer, "offer", self.peer_id)
                await self.engine.set_remote_description(offer)
                if self.is_closed:
                    return False
                self.remote_description = offer
                self.state = NegotiationState.HAVE_REMOTE_OFFER
                logger.info(f"[Negotiation] {self._tag()} 원격 offer 설정 완료")

                await self._drain_pending()
                if self.is_closed:
                    return False

                answer = await self.engine.create_answer()
                if self.is_closed:
                    return False
                applied = await self.engine.set_local_description(answer)
                if self.is_closed:
                    return False
            except Exception as e:
                await self._fail(e)
                return False

            self.local_description = applied or answer
            self.state = NegotiationState.STABLE
            logger.info(f"[Negotiation] {self._tag()} answer 설정 완료 (stable)")

        await self._emit(LocalDescription(self.peer_id, self.local_description))
        return True

    async def handle_answer(self, answer: Dict[str, Any]) -> bool:
        """원격 answer를 적용합니다 (HaveLocalOffer → Stable).

        HaveLocalOffer가 아닌 상태에서 도착한 answer(중복/지연/순서 뒤바뀜)는
        로그를 남기고 버리며 상태는 바뀌지 않습니다.

        Returns:
            bool: answer가 적용되었으면 True
        """
        async with self._lock:
            if self.state != NegotiationState.HAVE_LOCAL_OFFER:
                logger.warning(f"[Negotiation] {self._tag()} answer 폐기 (state={self.state.value})")
                return False

            try:
                answer = _validate_description(answer, "answer", self.peer_id)
                await self.engine.set_remote_description(answer)
                if self.is_closed:
                    return False
                self.remote_description = answer
                self.state = NegotiationState.STABLE
                logger.info(f"[Negotiation] {self._tag()} 원격 answer 설정 완료 (stable)")

                await self._drain_pending()
            except Exception as e:
                await self._fail(e)
                return False

        return True

    # ------------------------------------------------------------
    # ICE candidate
    # ------------------------------------------------------------

    async def add_candidate(self, candidate: Optional[Dict[str, Any]]) -> bool:
        """원격 ICE candidate를 추가합니다.

        remote description이 없으면 버퍼에 넣고, 있으면 즉시 엔진에 적용합니다.
        빈 candidate (end-of-candidates)는 무시합니다.

        Returns:
            bool: 엔진에 적용되었으면 True (버퍼링/무시/실패는 False)
        """
        if not candidate:
            return False
        if self.is_closed:
            logger.debug(f"[Negotiation] {self._tag()} 닫힌 세션 - candidate 무시")
            return False

        if self.remote_description is None:
            self.pending.append(candidate)
            logger.debug(f"[Negotiation] {self._tag()} candidate 대기열 추가 (대기: {len(self.pending)})")
            return False

        async with self._lock:
            if self.is_closed:
                return False
            return await self._apply_candidate(candidate)

    async def _drain_pending(self) -> None:
        """대기 중인 candidate를 도착 순서대로 적용합니다. 잠금을 잡은 상태에서 호출."""
        if not self.pending:
            return

        total = len(self.pending)
        applied = 0
        while self.pending and not self.is_closed:
            if await self._apply_candidate(self.pending.popleft()):
                applied += 1
        logger.info(f"[Negotiation] {self._tag()} 대기 candidate {applied}/{total}개 적용")

    async def _apply_candidate(self, candidate: Dict[str, Any]) -> bool:
        try:
            await self.engine.add_ice_candidate(candidate)
            return True
        except Exception as e:
            logger.warning(f"[Negotiation] {self._tag()} candidate 적용 실패 (계속 진행): {e}")
            return False

    # ------------------------------------------------------------
    # 엔진 콜백
    # ------------------------------------------------------------

    async def _on_connection_state_change(self, state: str) -> None:
        if self.is_closed:
            return

        if state == "failed":
            logger.error(f"[Negotiation] {self._tag()} 연결 실패 - 세션 유지, 사용자 결정 대기")
        elif state == "disconnected":
            logger.warning(f"[Negotiation] {self._tag()} 연결 끊김 - 복구 대기")
        else:
            logger.info(f"[Negotiation] {self._tag()} 연결 상태: {state}")

        await self._emit(ConnectionStateChanged(self.peer_id, state))

    async def _on_ice_state_change(self, state: str) -> None:
        if self.is_closed:
            return

        if state == "failed":
            logger.error(f"[Negotiation] {self._tag()} ICE 실패 - 세션 유지, 사용자 결정 대기")
        elif state == "disconnected":
            logger.warning(f"[Negotiation] {self._tag()} ICE 연결 끊김 - 복구 대기")
        else:
            logger.debug(f"[Negotiation] {self._tag()} ICE 상태: {state}")

        await self._emit(IceStateChanged(self.peer_id, state))

    async def _on_local_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.is_closed:
            return
        await self._emit(LocalCandidate(self.peer_id, candidate))

    # ------------------------------------------------------------
    # 종료
    # ------------------------------------------------------------

    async def close(self, reason: str = "closed") -> bool:
        """세션을 종료합니다 (any → Closed).

        대기 중인 candidate를 버리고 엔진을 닫습니다. 진행 중인 엔진 호출의
        결과는 완료 시점에 Closed를 확인하여 무시됩니다.

        Returns:
            bool: 이번 호출로 종료되었으면 True (이미 종료 상태면 False)
        """
        if self.is_closed:
            return False

        self.state = NegotiationState.CLOSED
        self.close_reason = reason
        discarded = self.pending.clear()
        logger.info(f"[Negotiation] {self._tag()} 세션 종료: {reason} (버린 candidate {discarded}개)")

        try:
            await self.engine.close()
        except Exception as e:
            logger.warning(f"[Negotiation] {self._tag()} 엔진 종료 중 오류: {e}")

        await self._emit(SessionClosed(self.peer_id, reason))
        return True

    async def _fail(self, error: Exception) -> None:
        """복구 불가 협상 오류 처리: NegotiationFailed 이벤트 후 Closed."""
        if self.is_closed:
            logger.debug(f"[Negotiation] {self._tag()} 종료 후 엔진 오류 무시: {error}")
            return

        logger.error(f"[Negotiation] {self._tag()} 협상 실패: {type(error).__name__}: {error}")
        await self._emit(NegotiationFailed(self.peer_id, str(error)))
        await self.close(reason="negotiation-failed")
