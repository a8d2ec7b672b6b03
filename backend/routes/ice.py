"""ICE 서버 API 라우터.

클라이언트가 RTCPeerConnection 생성 시 사용할 STUN/TURN 서버 목록을 제공합니다.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from modules import ICEServerProvider, ICEServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ice"])


@router.get("/ice-servers")
@router.get("/turn-credentials")
async def get_ice_servers(request: Request):
    """STUN/TURN 서버 목록을 반환합니다.

    TURN credential은 Backend 환경 변수 또는 Twilio에서만 관리되며,
    Frontend 코드에 직접 노출되지 않습니다.

    Returns:
        list: ICE server 설정 리스트
            [
                {"urls": "stun:stun.l.google.com:19302"},
                {"urls": "turn:...", "username": "...", "credential": "..."}
            ]

    Raises:
        HTTPException: ICE 서버 정보를 가져올 수 없는 경우 (503)
    """
    provider: ICEServerProvider = request.app.state.ice_provider
    try:
        return await provider.get_ice_servers()
    except ICEServiceError as e:
        logger.error(f"ICE 서버 조회 실패: {e}")
        raise HTTPException(status_code=503, detail="ICE service unavailable")
