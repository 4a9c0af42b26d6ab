"""FastAPI WebRTC Signaling Relay with Room Support.

이 모듈은 룸 기반 WebRTC 시그널링 릴레이 서버를 제공합니다.
FastAPI와 WebSocket을 사용하여 같은 룸의 클라이언트들이 서로를 발견하고
offer/answer/ICE candidate를 교환할 수 있도록 중계합니다.

주요 기능:
    - 룸 기반 멤버 관리 (입장 시 기존 멤버 스냅샷 전달)
    - WebRTC offer/answer 및 ICE candidate point-to-point 전달
    - 실시간 참가자 입/퇴장 알림
    - 활성 룸 조회 및 ICE 서버 설정 제공 API
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - Mesh 패턴: 미디어는 피어 간 직접 전송, 서버는 시그널링만 담당
    - SignalingRelay: 룸/연결 상태 소유 (app.state.relay)
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
import os
import sys
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modules.signaling import SignalingRelay
from routes import health_router, signaling_router

# Load 환경변수 from config/.env
load_dotenv(Path(__file__).parent / "config" / ".env")

SERVICE_NAME = "WebRTC Signaling Relay with Rooms"

logger = logging.getLogger(__name__)


# ============================================================
# 로깅 설정
# ============================================================

def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """로깅 설정 초기화.

    Args:
        level: 로그 레벨 (기본: LOG_LEVEL 환경변수, 없으면 INFO)
        log_file: 로그 파일 경로 (기본: LOG_FILE_PATH 환경변수, 없으면 파일 출력 안 함)

    Note:
        서버 시작 시 한 번만 호출해야 합니다.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("LOG_FILE_PATH")
    log_level = getattr(logging, level, logging.INFO)

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # 콘솔 핸들러
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # 파일 핸들러 (10MB마다 새 파일, 최대 5개 백업)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # 외부 라이브러리 로그 억제
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aioice").setLevel(logging.WARNING)
    logging.getLogger("aiortc").setLevel(logging.WARNING)

    logger.info(f"로깅 초기화 완료: level={level}, file={log_file or 'None'}")


# ============================================================
# 애플리케이션
# ============================================================

def create_app(relay: Optional[SignalingRelay] = None, configure_logging: bool = True) -> FastAPI:
    """FastAPI 애플리케이션을 생성합니다.

    Args:
        relay: 사용할 릴레이 (없으면 새로 생성)
        configure_logging: 시작 시 setup_logging() 호출 여부

    Returns:
        FastAPI: 라우터와 미들웨어가 등록된 앱
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """서버 시작/종료 시 초기화 및 정리 작업을 수행합니다.

        Note:
            - 시작: 로깅 설정
            - 종료: 모든 클라이언트 연결 정리
        """
        if configure_logging:
            setup_logging()
        logger.info("WebRTC 시그널링 릴레이 시작 중...")

        yield

        logger.info("서버 종료 중...")
        await app.state.relay.close_all()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.relay = relay or SignalingRelay()

    # CORS - 개발 환경에서는 모든 로컬 네트워크 허용
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$|^https://.*\.ngrok(-free)?\.(app|dev|io)$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 라우터 등록
    app.include_router(health_router)
    app.include_router(signaling_router)

    @app.get("/")
    async def root():
        """서버 상태 확인 엔드포인트.

        Returns:
            dict: ``{"status": "ok", "service": SERVICE_NAME}``
        """
        return {"status": "ok", "service": SERVICE_NAME}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
