"""Backend modules package.

이 패키지는 WebRTC broadcast 시그널링 서버의 핵심 모듈을 포함합니다.

Modules:
    webrtc: 시그널링 허브, liveness 모니터, ICE 서버 제공
"""

from .webrtc import (
    SignalingHub,
    HubState,
    Connection,
    Role,
    LivenessMonitor,
    ICEServerProvider,
    ICEServiceError,
    SignalingSettings,
    get_settings,
)

__all__ = [
    "SignalingHub",
    "HubState",
    "Connection",
    "Role",
    "LivenessMonitor",
    "ICEServerProvider",
    "ICEServiceError",
    "SignalingSettings",
    "get_settings",
]
