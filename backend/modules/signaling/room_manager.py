"""룸 멤버십 관리 모듈 (RoomTable).

이 모듈은 시그널링 릴레이의 룸(방)과 멤버(클라이언트 ID) 관리를 담당합니다.
룸은 첫 입장 시 자동 생성되고 마지막 멤버가 나가면 자동 삭제됩니다.

주요 기능:
    - 룸 생성 및 삭제 (자동 생성/비어있을 때 자동 삭제)
    - 멤버 입장/퇴장 관리 (중복 없음, 입장 순서 유지)
    - 룸별 멤버 목록 조회
    - 룸 상태 모니터링 (멤버 수, 멤버 목록)

Architecture:
    - rooms: Dict[str, Dict[str, Member]] - 룸 이름 → 멤버 맵
    - 클라이언트 → 현재 룸 매핑은 ConnectionRegistry가 소유

Thread Safety:
    - 자체 잠금 없음. SignalingRelay의 asyncio.Lock 안에서만 변경됨

See Also:
    relay.py: 룸 입장/퇴장 시 알림 브로드캐스트
    registry.py: 클라이언트 연결 관리
"""
import time
import logging
from typing import Dict, List
from dataclasses import dataclass, field

from .errors import RoomError

logger = logging.getLogger(__name__)


@dataclass
class Member:
    """룸에 입장한 클라이언트.

    Attributes:
        client_id (str): 릴레이가 할당한 클라이언트 ID
        joined_at (float): 입장 시각 (epoch seconds)
    """
    client_id: str
    joined_at: float = field(default_factory=time.time)


class RoomManager:
    """룸과 멤버를 관리하는 클래스.

    Attributes:
        rooms (Dict[str, Dict[str, Member]]): 룸 이름을 키로 하는 룸 딕셔너리.
            멤버 딕셔너리는 입장 순서를 유지합니다.

    Examples:
        >>> manager = RoomManager()
        >>> manager.join_room("R1", "A")
        []
        >>> manager.join_room("R1", "B")
        ['A']
        >>> manager.get_room_members("R1")
        ['A', 'B']
    """

    def __init__(self):
        # room_name -> {client_id: Member}
        self.rooms: Dict[str, Dict[str, Member]] = {}

    def create_room(self, room_name: str) -> None:
        """룸이 없으면 빈 룸을 생성합니다."""
        if room_name not in self.rooms:
            self.rooms[room_name] = {}
            logger.info(f"[Room] 룸 '{room_name}' 생성")

    def join_room(self, room_name: str, client_id: str) -> List[str]:
        """클라이언트를 룸에 추가하고 기존 멤버 스냅샷을 반환합니다.

        스냅샷은 추가 직전의 멤버 목록이며 입장한 클라이언트 자신은 포함되지
        않습니다. 이미 멤버인 경우 멤버십은 바뀌지 않고 자신을 제외한 현재
        멤버 목록을 반환합니다.

        Args:
            room_name (str): 입장할 룸 이름
            client_id (str): 입장하는 클라이언트 ID

        Returns:
            List[str]: 기존 멤버 ID 리스트 (입장 순서)
        """
        # Create room if doesn't exist
        if room_name not in self.rooms:
            self.create_room(room_name)

        members = self.rooms[room_name]
        previous = [cid for cid in members if cid != client_id]
        if client_id not in members:
            members[client_id] = Member(client_id=client_id)

        logger.info(f"[Room] {client_id} 룸 '{room_name}' 입장. 멤버 {len(members)}명")
        return previous

    def leave_room(self, room_name: str, client_id: str) -> bool:
        """클라이언트를 룸에서 제거합니다.

        룸이 비게 되면 룸을 삭제합니다.

        Args:
            room_name (str): 퇴장할 룸 이름
            client_id (str): 퇴장하는 클라이언트 ID

        Returns:
            bool: 제거 후 룸이 삭제되었으면 True

        Raises:
            RoomError: 룸이 없거나 클라이언트가 멤버가 아닌 경우
        """
        members = self.rooms.get(room_name)
        if members is None or client_id not in members:
            raise RoomError(f"{client_id} is not a member of room '{room_name}'")

        del members[client_id]

        # Delete room if empty
        if not members:
            del self.rooms[room_name]
            logger.info(f"[Room] 룸 '{room_name}' 삭제 (빈 룸)")
            return True

        logger.info(f"[Room] {client_id} 룸 '{room_name}' 퇴장. 멤버 {len(members)}명")
        return False

    def get_room_members(self, room_name: str) -> List[str]:
        """룸의 모든 멤버 ID를 입장 순서로 반환합니다. 룸이 없으면 빈 리스트."""
        return list(self.rooms.get(room_name, {}))

    def get_other_members(self, room_name: str, exclude_client_id: str) -> List[str]:
        """특정 클라이언트를 제외한 룸 멤버 ID를 반환합니다."""
        return [cid for cid in self.rooms.get(room_name, {}) if cid != exclude_client_id]

    def has_member(self, room_name: str, client_id: str) -> bool:
        return client_id in self.rooms.get(room_name, {})

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 룸 정보 딕셔너리 리스트
                - room_name (str): 룸 이름
                - peer_count (int): 현재 멤버 수
                - peers (List[dict]): 멤버 정보 (client_id, joined_at)
        """
        return [
            {
                "room_name": room_name,
                "peer_count": len(members),
                "peers": [{"client_id": m.client_id, "joined_at": m.joined_at}
                          for m in members.values()]
            }
            for room_name, members in self.rooms.items()
        ]
