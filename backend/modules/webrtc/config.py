"""시그널링 서버 설정.

포트, 로깅, WebSocket ping 주기, ICE(STUN/TURN) 서버 등
시그널링 서버 관련 설정을 환경변수에서 로드합니다.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)

# 기본 공개 STUN 서버 (fallback)
DEFAULT_STUN_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
)


class SignalingSettings(BaseSettings):
    """시그널링 서버 설정 클래스.

    환경 변수를 Python 객체로 매핑하고 유효성을 검증합니다.
    """

    # ==========================================
    # 서버 설정
    # ==========================================
    HOST: str = Field(default="0.0.0.0", description="서버 바인드 주소")
    PORT: int = Field(default=3000, description="서버 포트")
    STATIC_DIR: str = Field(default="public", description="프론트엔드 정적 파일 디렉토리")
    CORS_ORIGIN_REGEX: str = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}|172\.\d{1,3}\.\d{1,3}\.\d{1,3})(:\d+)?$",
        description="CORS 허용 Origin 정규식"
    )

    # ==========================================
    # 로깅 설정
    # ==========================================
    LOG_LEVEL: str = Field(default="INFO", description="로그 레벨")
    LOG_DIR: str = Field(default="logs", description="로그 파일 디렉토리 (빈 값이면 파일 로깅 안함)")
    LOG_RETENTION_DAYS: int = Field(default=60, description="로그 보관 기간 (일)")

    # ==========================================
    # 시그널링 허브 설정
    # ==========================================
    PING_INTERVAL: float = Field(default=30.0, ge=0, description="WebSocket ping 및 연결 점검 주기 (초), 0이면 비활성화")
    PING_TIMEOUT: float = Field(default=20.0, gt=0, description="WebSocket pong 대기 시간 (초)")
    SEND_TIMEOUT: float = Field(default=5.0, gt=0, description="메시지 전송 타임아웃 (초)")
    OUTBOX_SIZE: int = Field(default=64, gt=0, description="연결별 전송 대기 큐 크기 (가득 차면 메시지 버림)")
    REPLAY_PENDING_VIEWERS: bool = Field(
        default=True,
        description="새 broadcaster에게 기존 viewer 목록을 viewer-join으로 재전송"
    )

    # ==========================================
    # ICE 서버 설정
    # ==========================================
    ICE_PROVIDER: str = Field(default="auto", description="ICE 서버 제공 방식 (auto, static, twilio)")
    ICE_REQUEST_TIMEOUT: float = Field(default=10.0, gt=0, description="ICE 서버 요청 타임아웃 (초)")

    STUN_SERVER_URL: Optional[str] = Field(default=None, description="커스텀 STUN 서버 URL")
    TURN_SERVER_URL: Optional[str] = Field(default=None, description="TURN 서버 URL")
    TURN_USERNAME: Optional[str] = Field(default=None, description="TURN 사용자명")
    TURN_CREDENTIAL: Optional[str] = Field(default=None, description="TURN 비밀번호")

    TWILIO_ACCOUNT_SID: Optional[str] = Field(default=None, description="Twilio Account SID")
    TWILIO_AUTH_TOKEN: Optional[str] = Field(default=None, description="Twilio Auth Token")
    TWILIO_TOKEN_TTL: int = Field(default=3600, gt=0, description="Twilio TURN credential 유효 시간 (초)")

    # ==========================================
    # 유효성 검증
    # ==========================================
    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """로그 레벨 유효성 검증"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL은 {allowed} 중 하나여야 합니다.")
        return v.upper()

    @field_validator("ICE_PROVIDER")
    @classmethod
    def validate_ice_provider(cls, v: str) -> str:
        """ICE 제공 방식 유효성 검증"""
        allowed = ["auto", "static", "twilio"]
        if v.lower() not in allowed:
            raise ValueError(f"ICE_PROVIDER는 {allowed} 중 하나여야 합니다.")
        return v.lower()

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    @property
    def has_twilio(self) -> bool:
        """Twilio 자격 증명 설정 여부."""
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)

    class Config:
        """Pydantic 설정"""
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> SignalingSettings:
    """설정 싱글톤 인스턴스를 반환합니다.

    재로딩이 필요하면 get_settings.cache_clear()를 호출하세요.
    """
    settings = SignalingSettings()
    logger.info(f"[Signaling Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
    logger.info(f"[Signaling Config] ICE 제공 방식: {settings.ICE_PROVIDER}, "
                f"TURN 설정: {settings.has_turn_server}, Twilio 설정: {settings.has_twilio}")
    return settings
