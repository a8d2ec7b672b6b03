"""WebRTC 시그널링 WebSocket 라우터.

broadcaster/viewer 시그널링을 위한 WebSocket 엔드포인트를 제공합니다.
수신한 프레임은 모두 SignalingHub로 전달되며, 연결이 끊기면
허브의 종료 처리(end, viewer-left 알림)가 실행됩니다.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from modules import SignalingHub

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketTransport:
    """FastAPI WebSocket을 허브의 Transport 인터페이스로 감싸는 어댑터.

    전송은 best-effort로 동작합니다. 연결이 열려 있지 않으면 전송하지 않고,
    타임아웃이나 전송 오류는 로그만 남기고 무시합니다. 연결 생존 여부는
    uvicorn의 WebSocket ping/pong이 판단하며, is_connected는 그 결과가
    반영된 연결 상태를 반환합니다.

    Attributes:
        websocket (WebSocket): FastAPI WebSocket 연결 객체
        send_timeout (float): 메시지 1건 전송 제한 시간 (초)
    """

    def __init__(self, websocket: WebSocket, send_timeout: float):
        self.websocket = websocket
        self.send_timeout = send_timeout

    @property
    def is_open(self) -> bool:
        return (self.websocket.application_state == WebSocketState.CONNECTED
                and self.websocket.client_state == WebSocketState.CONNECTED)

    async def send(self, message: dict) -> bool:
        if not self.is_open:
            return False
        try:
            await asyncio.wait_for(self.websocket.send_json(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"메시지 전송 타임아웃 ({self.send_timeout}초): type={message.get('type')}")
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning(f"메시지 전송 실패: type={message.get('type')}, {e}")
        return False

    async def is_connected(self) -> bool:
        return self.is_open

    async def close(self, code: int = 1000) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError) as e:
            logger.debug(f"WebSocket 종료 중 오류 무시: {e}")


@router.websocket("/ws")
@router.websocket("/")
async def websocket_endpoint(websocket: WebSocket):
    """broadcaster/viewer 시그널링 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - broadcaster-ready: broadcaster 등록
        - viewer-join: viewer 등록 (viewerId 발급)
        - offer: broadcaster → viewer SDP 전달 (viewerId, sdp)
        - answer: viewer → broadcaster SDP 전달 (viewerId, sdp)
        - ice-candidate: from 방향에 따라 candidate 전달 (viewerId, candidate, from)

    Args:
        websocket: FastAPI WebSocket 연결 객체
    """
    hub: SignalingHub = websocket.app.state.hub
    settings = websocket.app.state.settings

    await websocket.accept()
    conn = hub.register(WebSocketTransport(websocket, settings.SEND_TIMEOUT))

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.info(f"연결 {conn.id} 끊김 (code={frame.get('code')})")
                break

            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes")
            if raw is None:
                continue
            await hub.handle_raw(conn, raw)

    except WebSocketDisconnect:
        logger.info(f"연결 {conn.id} 끊김")
    except Exception as e:
        logger.error(f"연결 {conn.id}의 WebSocket 처리 중 오류: {e}", exc_info=True)
    finally:
        await hub.disconnect(conn)
        logger.info(f"연결 {conn.id} 정리 완료")
