"""WebRTC 시그널링 모듈.

broadcaster/viewer 시그널링 허브, 메시지 코덱, liveness 모니터,
ICE 서버 제공 기능을 제공합니다.

Classes:
    SignalingHub: 연결 레지스트리 및 메시지 라우팅
    HubState: 허브 공유 상태
    Connection: 허브에 등록된 연결
    LivenessMonitor: 응답 없는 연결 정리
    ICEServerProvider: STUN/TURN 서버 목록 제공

Config:
    SignalingSettings: 환경변수 기반 설정
    get_settings: 설정 싱글톤
"""

from .hub import SignalingHub, HubState, Connection, Role, Transport
from .liveness import LivenessMonitor
from .ice import ICEServerProvider, ICEServiceError
from .config import SignalingSettings, get_settings

__all__ = [
    # Classes
    "SignalingHub",
    "HubState",
    "Connection",
    "Role",
    "Transport",
    "LivenessMonitor",
    "ICEServerProvider",
    "ICEServiceError",
    # Config
    "SignalingSettings",
    "get_settings",
]
