"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check(request: Request):
    """서버 및 시그널링 허브 상태를 확인합니다.

    Returns:
        dict: 서버 상태와 허브 연결 통계
    """
    hub = request.app.state.hub
    return {
        "status": "ok",
        "hub": hub.get_stats(),
    }
