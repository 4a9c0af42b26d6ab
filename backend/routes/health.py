"""Health Check 및 조회 API 라우터.

서비스 상태, 활성 룸 목록, ICE 서버 설정 조회 엔드포인트들을 제공합니다.
"""

from fastapi import APIRouter, Depends

from modules.signaling import SignalingRelay
from modules.webrtc import ice_config
from .deps import get_relay, verify_auth_header

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health_check(relay: SignalingRelay = Depends(get_relay)):
    """릴레이 상태를 확인합니다.

    Returns:
        dict: ``{"status": "ok", "rooms": int, "connections": int}``
    """
    return {"status": "ok", **relay.stats()}


@router.get("/rooms")
async def get_rooms(
    relay: SignalingRelay = Depends(get_relay),
    _: bool = Depends(verify_auth_header),
):
    """활성화된 모든 룸의 목록을 조회합니다.

    Returns:
        dict: 룸 목록 (room_name, peer_count, peers)
    """
    return {"rooms": relay.room_list()}


@router.get("/ice-servers")
async def get_ice_servers(_: bool = Depends(verify_auth_header)):
    """클라이언트가 사용할 ICE 서버(STUN/TURN) 설정을 제공합니다.

    TURN credentials는 서버 환경 변수에서만 관리합니다.

    Environment Variables:
        TURN_SERVER_URL, TURN_USERNAME, TURN_CREDENTIAL, STUN_SERVER_URL

    Returns:
        dict: ``{"iceServers": [...]}``
    """
    return {"iceServers": ice_config.as_dicts()}
