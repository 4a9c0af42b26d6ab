"""시그널링 릴레이 모듈.

같은 룸의 클라이언트 사이에서 시그널링 envelope를 중계합니다.
미디어 경로에는 관여하지 않으며, 룸 입장/퇴장 알림과 offer/answer/ICE
candidate의 point-to-point 전달만 담당합니다.

주요 기능:
    - 연결 시 클라이언트 ID 할당 (connected)
    - 룸 입장 시 기존 멤버 스냅샷 전송 (room-users) 및 입장 알림 (user-joined)
    - 퇴장/연결 종료 시 퇴장 알림 (user-disconnected)
    - offer/answer/ice-candidate 대상 클라이언트로 전달
    - 룸 멤버 목록 조회 (users-list)

Concurrency:
    - RoomManager/ConnectionRegistry 변경은 모두 하나의 asyncio.Lock 안에서 수행
    - 같은 룸에 동시에 입장해도 스냅샷과 브로드캐스트가 같은 변경에서 계산됨
    - 전송은 ClientConnection 송신 큐에 넣기만 하므로 잠금 안에서도 블로킹 없음

Examples:
    >>> relay = SignalingRelay()
    >>> conn = await relay.connect(websocket)          # -> connected
    >>> await relay.handle_message(conn.client_id, '{"type": "join-room", "roomId": "R1"}')
    >>> await relay.disconnect(conn.client_id)          # -> user-disconnected

See Also:
    room_manager.py: 룸 멤버십
    registry.py: 클라이언트 연결과 송신 큐
    routes/signaling.py: WebSocket 엔드포인트
"""
import asyncio
import logging
from typing import List, Optional

from .config import RelayConfig, relay_config
from .envelope import (
    Envelope,
    MessageType,
    ROUTED_FIELDS,
    make_envelope,
    parse_envelope,
)
from .errors import ProtocolError, RoomError, TransportError
from .registry import ClientConnection, ConnectionRegistry
from .room_manager import RoomManager

logger = logging.getLogger(__name__)


class SignalingRelay:
    """룸 기반 시그널링 릴레이.

    하나의 인스턴스가 RoomManager와 ConnectionRegistry를 소유하며,
    FastAPI 앱의 ``app.state.relay``로 핸들러에 주입됩니다.

    Attributes:
        rooms (RoomManager): 룸 → 멤버 매핑
        registry (ConnectionRegistry): 클라이언트 ID → 연결 매핑
        config (RelayConfig): 릴레이 설정
    """

    def __init__(
        self,
        rooms: Optional[RoomManager] = None,
        registry: Optional[ConnectionRegistry] = None,
        config: RelayConfig = relay_config,
    ):
        self.config = config
        self.rooms = rooms or RoomManager()
        self.registry = registry or ConnectionRegistry(queue_size=config.OUTBOUND_QUEUE_SIZE)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------
    # 연결 수명주기
    # ------------------------------------------------------------

    async def connect(self, websocket) -> ClientConnection:
        """새 전송을 등록하고 ``connected`` 메시지로 ID를 알려줍니다."""
        async with self._lock:
            connection = self.registry.register(websocket)
            connection.start()
            self._deliver(connection, make_envelope(MessageType.CONNECTED, clientId=connection.client_id))

        logger.info(f"[Relay] 클라이언트 {connection.client_id} 연결됨")
        return connection

    async def disconnect(self, client_id: str) -> None:
        """전송 종료 처리 (leave).

        룸에서 제거하고 남은 멤버에게 ``user-disconnected``를 보낸 뒤
        연결을 해제합니다. 이미 해제된 클라이언트면 아무것도 하지 않습니다.
        """
        async with self._lock:
            connection = self.registry.get(client_id)
            if connection is None:
                return
            if connection.room_id:
                self._remove_from_room(client_id, connection.room_id)
            self.registry.unregister(client_id)

        await connection.close()
        logger.info(f"[Relay] 클라이언트 {client_id} 정리 완료")

    async def close_all(self) -> None:
        """모든 연결을 정리합니다 (서버 종료 시)."""
        async with self._lock:
            connections = list(self.registry.connections.values())
            self.registry.connections.clear()
            self.rooms.rooms.clear()

        for connection in connections:
            await connection.close()
        logger.info(f"[Relay] 연결 {len(connections)}개 정리 완료")

    # ------------------------------------------------------------
    # 룸 입장/퇴장
    # ------------------------------------------------------------

    async def join(self, client_id: str, room_id: str) -> List[str]:
        """클라이언트를 룸에 입장시킵니다.

        다른 룸에 있으면 먼저 그 룸에서 암묵적으로 퇴장합니다 (이전 룸의
        멤버들은 ``user-disconnected``를 받음). 입장 후 기존 멤버에게는
        ``user-joined``(갱신된 멤버 목록 포함)를, 입장한 클라이언트에게는
        ``room-users``(기존 멤버만)를 보냅니다.

        Args:
            client_id (str): 입장하는 클라이언트 ID
            room_id (str): 입장할 룸 ID

        Returns:
            List[str]: 입장 시점의 기존 멤버 스냅샷 (자신 제외)
        """
        async with self._lock:
            connection = self.registry.get(client_id)
            if connection is None:
                logger.warning(f"[Relay] 등록되지 않은 클라이언트의 입장 요청: {client_id}")
                return []

            if connection.room_id == room_id:
                # Already a member: resend the snapshot, no broadcast
                snapshot = self.rooms.get_other_members(room_id, client_id)
                self._deliver(connection, make_envelope(MessageType.ROOM_USERS, users=snapshot))
                return snapshot

            if connection.room_id:
                logger.info(f"[Relay] {client_id} 룸 이동: '{connection.room_id}' -> '{room_id}'")
                self._remove_from_room(client_id, connection.room_id)

            snapshot = self.rooms.join_room(room_id, client_id)
            self.registry.set_room(client_id, room_id)
            room_users = snapshot + [client_id]

            self._broadcast(
                room_id,
                client_id,
                make_envelope(MessageType.USER_JOINED, sender=client_id, roomUsers=room_users),
            )
            self._deliver(connection, make_envelope(MessageType.ROOM_USERS, users=snapshot))

        logger.info(f"[Relay] {client_id} 룸 '{room_id}' 입장. 기존 멤버: {snapshot}")
        return snapshot

    async def leave_room(self, client_id: str) -> bool:
        """연결은 유지한 채 현재 룸에서 퇴장합니다.

        Returns:
            bool: 실제로 퇴장했으면 True, 룸에 없었으면 False (no-op)
        """
        async with self._lock:
            room_id = self.registry.get_room(client_id)
            if not room_id:
                logger.debug(f"[Relay] {client_id} 룸에 없음 - 퇴장 요청 무시")
                return False
            return self._remove_from_room(client_id, room_id)

    def _remove_from_room(self, client_id: str, room_id: str) -> bool:
        """룸에서 제거하고 남은 멤버에게 알립니다. 잠금을 잡은 상태에서 호출."""
        self.registry.set_room(client_id, None)
        try:
            self.rooms.leave_room(room_id, client_id)
        except RoomError as e:
            logger.debug(f"[Relay] 퇴장 no-op: {e}")
            return False

        self._broadcast(room_id, client_id, make_envelope(MessageType.USER_DISCONNECTED, sender=client_id))
        return True

    async def get_users(self, client_id: str) -> List[str]:
        """현재 룸의 다른 멤버 목록을 ``users-list``로 응답합니다."""
        async with self._lock:
            connection = self.registry.get(client_id)
            if connection is None:
                return []
            users = self.rooms.get_other_members(connection.room_id, client_id) if connection.room_id else []
            self._deliver(connection, make_envelope(MessageType.USERS_LIST, users=users))
        return users

    # ------------------------------------------------------------
    # 전달
    # ------------------------------------------------------------

    async def route(self, sender_id: str, target_id: str, message_type: MessageType, payload) -> bool:
        """point-to-point 메시지를 대상 클라이언트로 전달합니다.

        대상이 없거나 닫혀 있으면 조용히 버립니다 (재시도/확인 응답 없음).

        Returns:
            bool: 송신 큐에 들어갔으면 True
        """
        field_name = ROUTED_FIELDS[message_type]
        envelope = make_envelope(message_type, sender=sender_id, **{field_name: payload})

        async with self._lock:
            target = self.registry.get(target_id)
            if target is None or not target.is_open:
                logger.info(f"[Relay] {message_type.value} 전달 불가: {target_id} 없음 또는 연결 끊김")
                return False
            delivered = self._deliver(target, envelope)

        if message_type != MessageType.ICE_CANDIDATE:
            logger.info(f"[Relay] {message_type.value}: {sender_id} -> {target_id}")
        return delivered

    async def broadcast(self, room_id: str, except_id: Optional[str], envelope: Envelope) -> int:
        """룸의 모든 열린 연결(except_id 제외)에 envelope를 보냅니다."""
        async with self._lock:
            return self._broadcast(room_id, except_id, envelope)

    def _broadcast(self, room_id: str, except_id: Optional[str], envelope: Envelope) -> int:
        delivered = 0
        for member_id in self.rooms.get_room_members(room_id):
            if member_id == except_id:
                continue
            connection = self.registry.get(member_id)
            if connection is not None and connection.is_open and self._deliver(connection, envelope):
                delivered += 1
        return delivered

    def _deliver(self, connection: ClientConnection, envelope: Envelope) -> bool:
        try:
            connection.send(envelope)
            return True
        except TransportError as e:
            logger.warning(f"[Relay] {envelope.type.value} 폐기: {e}")
            return False

    # ------------------------------------------------------------
    # 메시지 처리
    # ------------------------------------------------------------

    async def handle_message(self, client_id: str, raw) -> None:
        """클라이언트로부터 받은 원시 메시지를 디코딩하고 처리합니다.

        잘못된 메시지는 로그를 남기고 발신자에게만 ``error``를 보내며,
        연결은 유지됩니다.
        """
        try:
            size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
            if size > self.config.MAX_MESSAGE_BYTES:
                raise ProtocolError(f"message too large ({size} bytes)")
            envelope = parse_envelope(raw)
        except ProtocolError as e:
            logger.warning(f"[Relay] {client_id}의 잘못된 메시지: {e}")
            await self.send_error(client_id, str(e))
            return

        message_type = envelope.type
        logger.debug(f"[Relay] {client_id} 메시지 수신: {message_type.value}")

        if message_type == MessageType.JOIN_ROOM:
            await self.join(client_id, envelope.get("roomId"))

        elif message_type == MessageType.LEAVE_ROOM:
            await self.leave_room(client_id)

        elif message_type == MessageType.GET_USERS:
            await self.get_users(client_id)

        elif message_type in ROUTED_FIELDS:
            await self.route(client_id, envelope.to, message_type, envelope.get(ROUTED_FIELDS[message_type]))

    async def send_error(self, client_id: str, message: str) -> None:
        async with self._lock:
            connection = self.registry.get(client_id)
            if connection is not None:
                self._deliver(connection, make_envelope(MessageType.ERROR, message=message))

    # ------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------

    def room_list(self) -> List[dict]:
        return self.rooms.get_room_list()

    def stats(self) -> dict:
        return {
            "rooms": len(self.rooms.rooms),
            "connections": len(self.registry),
        }
