"""WebRTC 시그널링 WebSocket 라우터.

클라이언트 하나당 WebSocket 연결 하나를 받아 SignalingRelay에 넘깁니다.
메시지 해석과 룸 처리는 모두 릴레이가 담당하며, 이 라우터는 전송 수명주기
(수락, 수신 루프, 종료 정리)만 관리합니다.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from modules.signaling import SignalingRelay
from .deps import get_relay, verify_ws_token

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    relay: SignalingRelay = Depends(get_relay),
):
    """WebRTC 시그널링을 위한 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - join-room: 룸 입장 (roomId)
        - leave-room: 현재 룸에서 퇴장
        - get-users: 현재 룸의 다른 멤버 목록 요청
        - offer / answer / ice-candidate: 대상 클라이언트(to)로 전달

    Args:
        websocket: FastAPI WebSocket 연결 객체
        token: 인증 토큰 (쿼리 파라미터)
        relay: 앱에 등록된 시그널링 릴레이
    """
    # 연결 수락 전 토큰 검증
    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()
    connection = await relay.connect(websocket)
    client_id = connection.client_id

    try:
        while True:
            raw = await websocket.receive_text()
            await relay.handle_message(client_id, raw)

    except WebSocketDisconnect:
        logger.info(f"[Relay] 클라이언트 {client_id} 연결 끊김")
    except Exception as e:
        logger.error(f"[Relay] 클라이언트 {client_id}의 WebSocket 연결 중 오류: {e}", exc_info=True)
    finally:
        await relay.disconnect(client_id)
