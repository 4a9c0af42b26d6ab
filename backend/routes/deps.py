"""공유 의존성 모듈.

라우터들이 공통으로 사용하는 의존성을 정의합니다.
"""

import os
from typing import Optional

from fastapi import Header, HTTPException
from fastapi.requests import HTTPConnection

from modules.signaling import SignalingRelay

# 접근 비밀번호 설정
ACCESS_PASSWORD = os.getenv("ACCESS_PASSWORD", "")


def get_relay(conn: HTTPConnection) -> SignalingRelay:
    """앱에 등록된 SignalingRelay 인스턴스를 반환합니다.

    HTTP 요청과 WebSocket 연결 모두에서 사용할 수 있습니다.
    """
    return conn.app.state.relay


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """Authorization 헤더를 검증합니다.

    Args:
        authorization: ``Bearer <password>`` 형식의 헤더 값

    Returns:
        bool: 검증 성공 시 True

    Raises:
        HTTPException: 인증 실패 시 (401)
    """
    if not ACCESS_PASSWORD:
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential:
        raise HTTPException(status_code=401, detail="Invalid authorization format")
    if credential != ACCESS_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid password")
    return True


def verify_ws_token(token: Optional[str]) -> bool:
    """WebSocket 연결 시 쿼리 토큰을 검증합니다."""
    if not ACCESS_PASSWORD:
        return True
    return token == ACCESS_PASSWORD
