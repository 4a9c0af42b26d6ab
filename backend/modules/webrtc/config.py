"""WebRTC 모듈 설정.

TURN/STUN 서버, 시그널링 클라이언트 등 WebRTC 관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_dicts(self) -> List[dict]:
        """브라우저 RTCPeerConnection 설정 형식의 ICE 서버 리스트.

        Returns:
            list: ``[{"urls": ...}, {"urls": ..., "username": ..., "credential": ...}]``
        """
        ice_servers = []

        if self.STUN_SERVER_URL:
            ice_servers.append({"urls": self.STUN_SERVER_URL})

        for stun_url in self.DEFAULT_STUN_SERVERS:
            ice_servers.append({"urls": stun_url})

        if self.has_turn_server:
            ice_servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL
            })

        return ice_servers


# ============================================================
# 시그널링 클라이언트 설정
# ============================================================

@dataclass(frozen=True)
class ClientConfig:
    """시그널링 클라이언트 설정."""

    # 릴레이 WebSocket 주소
    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")

    # 연결 타임아웃 (초)
    CONNECT_TIMEOUT: float = float(os.getenv("SIGNALING_CONNECT_TIMEOUT", "10"))

    # 애플리케이션 이벤트 큐 최대 길이 (0이면 무제한)
    EVENT_QUEUE_SIZE: int = 0


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
client_config = ClientConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
if ice_config.TURN_SERVER_URL:
    logger.info(f"[WebRTC Config] TURN URL: {ice_config.TURN_SERVER_URL}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info(f"[WebRTC Config] STUN URL: 기본 Google STUN 사용")
