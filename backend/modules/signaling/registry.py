"""클라이언트 연결 레지스트리 (ConnectionRegistry).

클라이언트 ID → 전송 핸들(WebSocket)과 현재 룸을 매핑합니다.
각 연결은 크기가 제한된 송신 큐와 전용 writer 태스크를 가지므로,
느리거나 막힌 수신자가 릴레이 전체를 멈추지 않습니다.

Classes:
    ClientConnection: 클라이언트 하나의 전송 핸들과 송신 큐
    ConnectionRegistry: 클라이언트 ID → ClientConnection 매핑
"""
import uuid
import asyncio
import logging
from typing import Dict, Optional, Union

from .config import relay_config
from .envelope import Envelope, serialize_envelope
from .errors import TransportError

logger = logging.getLogger(__name__)


class ClientConnection:
    """연결된 클라이언트 하나를 나타내는 클래스.

    send()는 블로킹 없이 메시지를 송신 큐에 넣기만 하며, 실제 소켓 전송은
    writer 태스크가 순서대로 수행합니다. 큐가 가득 차면 메시지를 버립니다.

    Attributes:
        client_id (str): 릴레이가 할당한 클라이언트 ID
        websocket: ``send_text`` 코루틴을 가진 전송 객체 (FastAPI WebSocket)
        room_id (Optional[str]): 현재 룸 (최대 하나)
        queue (asyncio.Queue): 직렬화된 송신 메시지 큐
        dropped (int): 큐 초과로 버려진 메시지 수
    """

    def __init__(self, client_id: str, websocket, queue_size: int = relay_config.OUTBOUND_QUEUE_SIZE):
        self.client_id = client_id
        self.websocket = websocket
        self.room_id: Optional[str] = None
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self._closed = False
        self._writer_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return not self._closed

    def start(self) -> None:
        """writer 태스크를 시작합니다."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer())

    def send(self, message: Union[Envelope, str]) -> None:
        """메시지를 송신 큐에 넣습니다 (fire-and-forget).

        Raises:
            TransportError: 연결이 닫혔거나 송신 큐가 가득 찬 경우
        """
        if self._closed:
            raise TransportError(f"connection {self.client_id} is closed")

        text = serialize_envelope(message) if isinstance(message, Envelope) else message

        try:
            self.queue.put_nowait(text)
        except asyncio.QueueFull:
            self.dropped += 1
            raise TransportError(
                f"outbound queue full for {self.client_id} (dropped {self.dropped})"
            ) from None

    async def _writer(self):
        """송신 큐를 소켓으로 흘려보내는 태스크."""
        try:
            while True:
                text = await self.queue.get()
                await self.websocket.send_text(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[Registry] {self.client_id} 전송 실패, 연결 닫힘으로 표시: {e}")
            self._closed = True

    async def close(self) -> None:
        """연결을 닫힘으로 표시하고 writer 태스크를 정리합니다."""
        self._closed = True
        task, self._writer_task = self._writer_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class ConnectionRegistry:
    """클라이언트 ID → ClientConnection 매핑.

    Attributes:
        connections (Dict[str, ClientConnection]): 활성 연결
        queue_size (int): 새 연결의 송신 큐 크기
    """

    def __init__(self, queue_size: int = relay_config.OUTBOUND_QUEUE_SIZE,
                 id_attempts: int = relay_config.CLIENT_ID_ATTEMPTS):
        self.connections: Dict[str, ClientConnection] = {}
        self.queue_size = queue_size
        self.id_attempts = id_attempts

    def new_client_id(self) -> str:
        """프로세스 수명 동안 유일한 클라이언트 ID를 생성합니다."""
        for _ in range(self.id_attempts):
            client_id = str(uuid.uuid4())
            if client_id not in self.connections:
                return client_id
        raise RuntimeError("could not allocate a unique client id")

    def register(self, websocket, client_id: Optional[str] = None) -> ClientConnection:
        """새 연결을 등록합니다. client_id를 주지 않으면 새로 할당합니다."""
        client_id = client_id or self.new_client_id()
        if client_id in self.connections:
            raise ValueError(f"client id already registered: {client_id}")

        connection = ClientConnection(client_id, websocket, queue_size=self.queue_size)
        self.connections[client_id] = connection
        logger.info(f"[Registry] {client_id} 등록. 활성 연결 {len(self.connections)}개")
        return connection

    def unregister(self, client_id: str) -> Optional[ClientConnection]:
        connection = self.connections.pop(client_id, None)
        if connection is not None:
            logger.info(f"[Registry] {client_id} 해제. 활성 연결 {len(self.connections)}개")
        return connection

    def get(self, client_id: str) -> Optional[ClientConnection]:
        return self.connections.get(client_id)

    def get_room(self, client_id: str) -> Optional[str]:
        """클라이언트의 현재 룸을 반환합니다."""
        connection = self.connections.get(client_id)
        return connection.room_id if connection else None

    def set_room(self, client_id: str, room_id: Optional[str]) -> None:
        connection = self.connections.get(client_id)
        if connection is not None:
            connection.room_id = room_id

    def __len__(self) -> int:
        return len(self.connections)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self.connections
