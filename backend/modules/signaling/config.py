"""시그널링 릴레이 설정.

환경변수 기반의 릴레이 동작 설정 (송신 큐 크기, 메시지 크기 제한 등).
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# 릴레이 설정
# ============================================================

@dataclass(frozen=True)
class RelayConfig:
    """시그널링 릴레이 설정."""

    # 클라이언트별 송신 큐 최대 길이 (가득 차면 새 메시지는 버려짐)
    OUTBOUND_QUEUE_SIZE: int = int(os.getenv("RELAY_OUTBOUND_QUEUE_SIZE", "64"))

    # 수신 메시지 최대 크기 (bytes)
    MAX_MESSAGE_BYTES: int = int(os.getenv("RELAY_MAX_MESSAGE_BYTES", str(64 * 1024)))

    # 클라이언트 ID 생성 재시도 횟수 (충돌 시)
    CLIENT_ID_ATTEMPTS: int = 5


# ============================================================
# 싱글톤 인스턴스
# ============================================================

relay_config = RelayConfig()

logger.info(
    f"[Relay Config] 송신 큐 크기: {relay_config.OUTBOUND_QUEUE_SIZE}, "
    f"최대 메시지: {relay_config.MAX_MESSAGE_BYTES} bytes"
)
