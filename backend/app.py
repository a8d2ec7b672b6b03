"""FastAPI WebRTC Broadcast Signaling Server.

이 모듈은 단일 broadcaster와 여러 viewer가 WebRTC peer-to-peer 연결을
맺을 수 있도록 SDP/ICE candidate를 중계하는 시그널링 서버를 제공합니다.
서버는 미디어를 다루지 않습니다.

주요 기능:
    - broadcaster/viewer 역할 등록
    - offer/answer/ICE candidate 1:1 중계
    - broadcaster 종료 시 viewer에게 end 알림, viewer 종료 시 viewer-left 알림
    - uvicorn WebSocket ping/pong과 주기 점검으로 끊어진 연결 정리
    - STUN/TURN 서버 정보 제공 (정적 설정 또는 Twilio)
    - 프론트엔드 정적 파일 제공

Architecture:
    - SignalingHub: 연결 레지스트리 및 메시지 라우팅 (app.state.hub)
    - LivenessMonitor: 끊어진 연결 정리 백그라운드 태스크
    - ICEServerProvider: ICE 서버 목록 제공
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import glob
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from modules import (
    SignalingHub, LivenessMonitor, ICEServerProvider, SignalingSettings, get_settings
)
from routes import health_router, ice_router, signaling_router

# 환경변수 로드 (config/.env)
load_dotenv(Path(__file__).parent / "config" / ".env")

settings = get_settings()


def cleanup_old_logs(log_dir: str, retention_days: int) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    if not log_dir or not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            filename = os.path.basename(log_file)
            date_str = filename.replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


def setup_logging(settings: SignalingSettings) -> None:
    """콘솔 + 일별 파일 로깅을 설정합니다.

    LOG_DIR이 비어 있으면 콘솔에만 출력합니다.
    """
    handlers = [logging.StreamHandler()]  # 콘솔 출력

    if settings.LOG_DIR:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        log_filename = os.path.join(settings.LOG_DIR, f"server_{datetime.now().strftime('%Y%m%d')}.log")
        handlers.append(logging.FileHandler(log_filename, encoding="utf-8"))  # 파일 저장

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


setup_logging(settings)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={settings.LOG_LEVEL}, dir={settings.LOG_DIR or 'None'}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    서버 시작 시 liveness 모니터를 시작하고, 종료 시 모니터를 정지한 뒤
    열린 모든 WebSocket 연결을 정리합니다.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Yields:
        None: 앱이 실행되는 동안 제어를 반환
    """
    app_settings: SignalingSettings = app.state.settings
    logger.info("WebRTC 시그널링 서버 시작 중...")

    # 오래된 로그 파일 정리
    deleted_logs = cleanup_old_logs(app_settings.LOG_DIR, app_settings.LOG_RETENTION_DAYS)
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({app_settings.LOG_RETENTION_DAYS}일 이상)")

    app.state.monitor.start()

    yield

    logger.info("서버 종료 중...")
    await app.state.monitor.stop()
    await app.state.hub.close_all()


def create_app(app_settings: Optional[SignalingSettings] = None) -> FastAPI:
    """시그널링 서버 애플리케이션을 생성합니다.

    앱마다 독립된 SignalingHub를 가지므로 테스트에서 여러 앱을 만들어도
    상태가 공유되지 않습니다.

    Args:
        app_settings: 사용할 설정. None이면 환경변수 설정 사용

    Returns:
        FastAPI: 설정된 애플리케이션
    """
    app_settings = app_settings or settings

    app = FastAPI(title="WebRTC Broadcast Signaling Server", lifespan=lifespan)

    hub = SignalingHub(
        replay_pending_viewers=app_settings.REPLAY_PENDING_VIEWERS,
        outbox_size=app_settings.OUTBOX_SIZE,
    )
    app.state.settings = app_settings
    app.state.hub = hub
    app.state.monitor = LivenessMonitor(hub, app_settings.PING_INTERVAL)
    app.state.ice_provider = ICEServerProvider(app_settings)

    # CORS - 로컬 네트워크 허용
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=app_settings.CORS_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 라우터 등록
    app.include_router(health_router)
    app.include_router(ice_router)
    app.include_router(signaling_router)

    # 프론트엔드 정적 파일 (라우터 뒤에 마운트해야 API 경로가 우선됨)
    if app_settings.STATIC_DIR and os.path.isdir(app_settings.STATIC_DIR):
        app.mount("/", StaticFiles(directory=app_settings.STATIC_DIR, html=True), name="static")
        logger.info(f"정적 파일 제공: {app_settings.STATIC_DIR}")
    else:
        @app.get("/")
        async def root():
            """서버 상태 확인 엔드포인트 (정적 파일 디렉토리가 없을 때)."""
            return {"status": "ok", "service": "WebRTC Broadcast Signaling Server"}

    return app


app = create_app()


def run(app_settings: Optional[SignalingSettings] = None) -> None:
    """uvicorn으로 서버를 실행합니다.

    WebSocket ping/pong은 uvicorn이 프로토콜 레벨에서 처리합니다.
    PING_TIMEOUT 안에 pong이 오지 않으면 uvicorn이 연결을 닫고,
    시그널링 엔드포인트의 종료 처리가 실행됩니다.
    """
    import uvicorn

    app_settings = app_settings or settings
    logger.info(f"http://localhost:{app_settings.PORT}")
    uvicorn.run(
        app,
        host=app_settings.HOST,
        port=app_settings.PORT,
        log_level=app_settings.LOG_LEVEL.lower(),
        ws_ping_interval=app_settings.PING_INTERVAL or None,
        ws_ping_timeout=app_settings.PING_TIMEOUT,
    )


if __name__ == "__main__":
    run()
