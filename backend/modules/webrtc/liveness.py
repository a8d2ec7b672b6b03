"""연결 liveness 모니터.

주기적으로 모든 연결의 전송 계층 상태를 점검하고, 이전 점검에서 응답하지
않은 연결을 강제로 종료합니다. 전송 계층이 아직 정리하지 못한 half-open
연결을 허브에서 제거하기 위한 용도입니다.

실제 ping/pong 프레임은 uvicorn의 WebSocket keepalive(ws_ping_interval,
ws_ping_timeout)가 주고받습니다. 클라이언트는 애플리케이션 메시지를 따로
보낼 필요가 없으며, 조용히 연결만 유지하는 viewer도 종료되지 않습니다.
"""

import asyncio
import logging
from typing import Optional

from .hub import SignalingHub

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """허브의 연결들을 주기적으로 점검하는 백그라운드 태스크.

    Attributes:
        hub (SignalingHub): 점검 대상 허브
        interval (float): 점검 주기 (초). 0 이하이면 시작하지 않음
    """

    def __init__(self, hub: SignalingHub, interval: float):
        self.hub = hub
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """한 번의 점검 주기를 수행합니다.

        이전 주기에 응답하지 않은 연결은 종료하고, 나머지 연결은
        전송 계층 상태를 다시 기록합니다.

        Returns:
            int: 종료시킨 연결 수
        """
        terminated = 0
        checked = []
        for conn in list(self.hub.state.connections.values()):
            if not conn.is_alive:
                logger.info(f"연결 {conn.id} 응답 없음, 종료")
                await conn.terminate()
                await self.hub.disconnect(conn)
                terminated += 1
                continue
            checked.append(conn)

        if checked:
            results = await asyncio.gather(*(conn.transport.is_connected() for conn in checked))
            for conn, connected in zip(checked, results):
                conn.is_alive = connected
        return terminated

    async def _run(self) -> None:
        logger.info(f"liveness 모니터 시작 (주기 {self.interval}초)")
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"liveness 점검 중 오류: {e}", exc_info=True)

    def start(self) -> None:
        if self.interval <= 0:
            logger.info("liveness 모니터 비활성화 (PING_INTERVAL=0)")
            return
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("liveness 모니터 정지")
