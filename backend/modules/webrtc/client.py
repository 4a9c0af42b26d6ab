"""시그널링 클라이언트 모듈.

릴레이 서버와 WebSocket 연결 하나를 유지하면서 envelope를 주고받고,
수신한 메시지를 PeerConnectionManager로 전달합니다.

주요 기능:
    - 릴레이 연결 및 클라이언트 ID 수신 (connected)
    - 룸 입장/퇴장, 멤버 목록 요청
    - 메시지 타입별 핸들러 디스패치
    - 애플리케이션 이벤트 큐 (상태 표시용)

Examples:
    >>> client = SignalingClient("ws://localhost:8000/ws")
    >>> client_id = await client.connect()
    >>> await client.join_room("R1")
    >>> asyncio.create_task(client.run())
    >>> event = await client.events.get()
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..signaling.envelope import (
    Envelope,
    MessageType,
    RELAY_REQUIRED_FIELDS,
    make_envelope,
    parse_envelope,
    serialize_envelope,
)
from ..signaling.errors import ProtocolError, TransportError
from .config import ClientConfig, client_config
from .engine import AiortcMediaEngine
from .events import PeerEvent, RelayError, RoomMembershipChanged
from .peer_manager import EngineFactory, PeerConnectionManager

logger = logging.getLogger(__name__)


class SignalingClient:
    """릴레이 서버용 WebSocket 시그널링 클라이언트.

    Attributes:
        url (str): 릴레이 WebSocket 주소
        client_id (Optional[str]): 릴레이가 할당한 ID (connect 후 설정)
        room_id (Optional[str]): 현재 룸
        users (List[str]): 현재 룸의 다른 멤버
        peers (Optional[PeerConnectionManager]): 피어별 협상 세션
        events (asyncio.Queue): 애플리케이션 이벤트 채널
    """

    def __init__(
        self,
        url: Optional[str] = None,
        engine_factory: EngineFactory = AiortcMediaEngine,
        config: ClientConfig = client_config,
    ):
        self.url = url or config.SIGNALING_URL
        self.engine_factory = engine_factory
        self.config = config

        self.ws = None
        self.client_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.users: List[str] = []
        self.peers: Optional[PeerConnectionManager] = None
        self.events: asyncio.Queue = asyncio.Queue(maxsize=config.EVENT_QUEUE_SIZE)

        self._handlers: Dict[MessageType, Callable[[Envelope], Awaitable[None]]] = {
            MessageType.CONNECTED: self._on_connected,
            MessageType.ROOM_USERS: self._on_room_users,
            MessageType.USER_JOINED: self._on_user_joined,
            MessageType.USER_DISCONNECTED: self._on_user_disconnected,
            MessageType.USERS_LIST: self._on_users_list,
            MessageType.OFFER: self._on_offer,
            MessageType.ANSWER: self._on_answer,
            MessageType.ICE_CANDIDATE: self._on_ice_candidate,
            MessageType.ERROR: self._on_error,
        }

    # ------------------------------------------------------------
    # 연결
    # ------------------------------------------------------------

    async def connect(self) -> str:
        """릴레이에 연결하고 ``connected`` 메시지로 받은 ID를 반환합니다.

        Raises:
            TransportError: 연결 또는 ID 수신이 타임아웃/실패한 경우
            ProtocolError: 첫 메시지가 ``connected``가 아닌 경우
        """
        timeout = self.config.CONNECT_TIMEOUT
        logger.info(f"[Signaling] 릴레이 연결 중: {self.url}")
        try:
            self.ws = await websockets.connect(self.url, open_timeout=timeout)
            raw = await asyncio.wait_for(self.ws.recv(), timeout=timeout)
        except (OSError, asyncio.TimeoutError, ConnectionClosed) as e:
            raise TransportError(f"cannot connect to {self.url}: {e}") from e

        envelope = parse_envelope(raw, RELAY_REQUIRED_FIELDS)
        if envelope.type != MessageType.CONNECTED:
            raise ProtocolError(f"expected 'connected', got '{envelope.type.value}'")

        self.bind(envelope.get("clientId"))
        return self.client_id

    def bind(self, client_id: str) -> PeerConnectionManager:
        """할당받은 ID로 피어 관리자를 생성합니다."""
        self.client_id = client_id
        self.peers = PeerConnectionManager(client_id, self.engine_factory, self.send, self.events)
        logger.info(f"[Signaling] 클라이언트 ID: {client_id}")
        return self.peers

    async def run(self) -> None:
        """연결이 닫힐 때까지 메시지를 수신하고 처리합니다."""
        if self.ws is None:
            raise TransportError("not connected")

        try:
            async for raw in self.ws:
                await self.handle_raw(raw)
        except ConnectionClosed as e:
            logger.warning(f"[Signaling] 릴레이 연결 종료: {e}")
        logger.info("[Signaling] 수신 루프 종료")

    async def handle_raw(self, raw) -> None:
        """원시 메시지 하나를 파싱하여 핸들러로 보냅니다."""
        try:
            envelope = parse_envelope(raw, RELAY_REQUIRED_FIELDS)
        except ProtocolError as e:
            logger.warning(f"[Signaling] 잘못된 메시지 무시: {e}")
            return

        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.warning(f"[Signaling] 처리할 수 없는 메시지 타입: {envelope.type.value}")
            return

        try:
            await handler(envelope)
        except Exception as e:
            logger.error(f"[Signaling] {envelope.type.value} 처리 중 오류: {e}", exc_info=True)

    async def send(self, envelope: Envelope) -> bool:
        """envelope를 릴레이로 보냅니다. 연결이 없거나 닫혔으면 버립니다."""
        if self.ws is None:
            logger.error(f"[Signaling] 연결 없음 - {envelope.type.value} 전송 불가")
            return False
        try:
            await self.ws.send(serialize_envelope(envelope))
            return True
        except ConnectionClosed as e:
            logger.warning(f"[Signaling] 연결 닫힘 - {envelope.type.value} 폐기: {e}")
            return False

    async def close(self) -> None:
        """모든 피어 세션을 종료하고 릴레이 연결을 닫습니다."""
        if self.peers is not None:
            await self.peers.close_all()
        if self.ws is not None:
            await self.ws.close()
            self.ws = None
        logger.info("[Signaling] 클라이언트 종료")

    # ------------------------------------------------------------
    # 요청
    # ------------------------------------------------------------

    async def join_room(self, room_id: str) -> bool:
        self.room_id = room_id
        return await self.send(make_envelope(MessageType.JOIN_ROOM, roomId=room_id))

    async def leave_room(self) -> bool:
        """현재 룸에서 퇴장하고 모든 피어 세션을 종료합니다."""
        if self.peers is not None:
            await self.peers.close_all(reason="left-room")
        self.room_id = None
        self.users = []
        return await self.send(make_envelope(MessageType.LEAVE_ROOM))

    async def get_users(self) -> bool:
        return await self.send(make_envelope(MessageType.GET_USERS))

    async def hang_up(self, peer_id: str) -> bool:
        """특정 피어와의 세션을 종료합니다 (사용자 동작)."""
        if self.peers is None:
            return False
        return await self.peers.close_peer(peer_id, reason="hangup")

    async def retry(self, peer_id: str) -> bool:
        """특정 피어와의 협상을 새 세션으로 다시 시작합니다 (사용자 동작).

        연결 실패나 협상 실패 후 사용자가 선택합니다. Initiator 쪽만 새 offer를
        보내며, Responder 쪽은 상대의 새 offer를 기다립니다.
        """
        if self.peers is None:
            return False
        return await self.peers.retry(peer_id)

    # ------------------------------------------------------------
    # 핸들러
    # ------------------------------------------------------------

    def _publish(self, event: PeerEvent) -> None:
        try:
            self.events.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"[Signaling] 이벤트 큐 가득 참 - {type(event).__name__} 폐기")

    async def _on_connected(self, envelope: Envelope):
        logger.warning(f"[Signaling] 중복 connected 무시: {envelope.get('clientId')}")

    async def _on_room_users(self, envelope: Envelope):
        self.users = [u for u in envelope.get("users", []) if u != self.client_id]
        logger.info(f"[Signaling] 룸 기존 멤버: {self.users}")
        self._publish(RoomMembershipChanged(users=list(self.users)))
        await self.peers.on_peers_visible(self.users)

    async def _on_user_joined(self, envelope: Envelope):
        peer_id = envelope.sender
        self.users = [u for u in envelope.get("roomUsers", []) if u != self.client_id]
        logger.info(f"[Signaling] 피어 입장: {peer_id}")
        self._publish(RoomMembershipChanged(users=list(self.users), joined=peer_id))
        await self.peers.on_peers_visible([peer_id])

    async def _on_user_disconnected(self, envelope: Envelope):
        peer_id = envelope.sender
        self.users = [u for u in self.users if u != peer_id]
        logger.info(f"[Signaling] 피어 퇴장: {peer_id}")
        self._publish(RoomMembershipChanged(users=list(self.users), left=peer_id))
        await self.peers.on_user_disconnected(peer_id)

    async def _on_users_list(self, envelope: Envelope):
        self.users = [u for u in envelope.get("users", []) if u != self.client_id]
        self._publish(RoomMembershipChanged(users=list(self.users)))

    async def _on_offer(self, envelope: Envelope):
        logger.info(f"[Signaling] offer 수신: {envelope.sender}")
        await self.peers.on_offer(envelope.sender, envelope.get("offer"))

    async def _on_answer(self, envelope: Envelope):
        logger.info(f"[Signaling] answer 수신: {envelope.sender}")
        await self.peers.on_answer(envelope.sender, envelope.get("answer"))

    async def _on_ice_candidate(self, envelope: Envelope):
        await self.peers.on_ice_candidate(envelope.sender, envelope.get("candidate"))

    async def _on_error(self, envelope: Envelope):
        message = envelope.get("message", "")
        logger.warning(f"[Signaling] 릴레이 오류: {message}")
        self._publish(RelayError(message=message))
