"""Broadcaster/Viewer 시그널링 허브 모듈.

이 모듈은 단일 broadcaster와 여러 viewer 사이의 WebRTC 시그널링을 담당합니다.
미디어는 다루지 않으며, SDP와 ICE candidate를 내용 검증 없이 중계합니다.

주요 기능:
    - 연결 등록 및 역할(broadcaster/viewer) 할당
    - offer/answer/ice-candidate 1:1 중계
    - 연결 종료 시 정리 및 상대방 알림 (end, viewer-left)

Architecture:
    - HubState.broadcaster: 현재 broadcaster 연결 (최대 1개, 새 announce가 덮어씀)
    - HubState.viewers: Dict[str, Connection] - viewerId → 연결
    - HubState.connections: Dict[str, Connection] - 연결 ID → 열린 모든 연결
    - Connection outbox: 연결마다 전송 큐와 writer 태스크를 두어
      보내는 쪽의 수신 루프가 받는 쪽의 전송을 기다리지 않음

Thread Safety:
    - 모든 동작은 uvicorn의 단일 asyncio 이벤트 루프에서 실행됨
    - HubState 변경 구간에는 await가 없으므로 변경끼리 서로 끼어들지 않음
    - 메시지는 큐에 넣기만 하며, 큐가 가득 차면 버림 (재시도 없음)

Examples:
    >>> hub = SignalingHub()
    >>> conn = hub.register(transport)
    >>> await hub.handle_raw(conn, '{"type": "broadcaster-ready"}')
    >>> await hub.disconnect(conn)

See Also:
    messages.py: 메시지 디코딩 및 생성
    liveness.py: 끊어진 연결 정리
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Union

from . import messages
from .messages import (
    Answer,
    BroadcasterReady,
    IceCandidate,
    InboundMessage,
    Offer,
    Unknown,
    ViewerJoin,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTBOX_SIZE = 64


class Role(str, Enum):
    """연결의 역할."""
    UNASSIGNED = "unassigned"
    BROADCASTER = "broadcaster"
    VIEWER = "viewer"


class Transport(Protocol):
    """허브가 사용하는 전송 계층 인터페이스.

    send는 연결이 열려 있지 않으면 아무 것도 하지 않고 False를 반환하며,
    전송 실패를 예외로 올리지 않습니다. is_connected는 전송 계층이 연결을
    아직 열려 있다고 보는지 반환합니다.
    """

    async def send(self, message: dict) -> bool: ...

    async def close(self, code: int = 1000) -> None: ...

    async def is_connected(self) -> bool: ...


@dataclass(eq=False)
class Connection:
    """허브에 등록된 클라이언트 연결.

    Attributes:
        transport (Transport): 메시지 전송/종료를 담당하는 전송 객체
        id (str): 연결 수락 시 부여되는 고유 식별자 (UUID, 로깅용)
        role (Role): 현재 역할. UNASSIGNED에서 한 번만 변경됨
        viewer_id (Optional[str]): viewer 역할일 때 허브가 발급한 ID
        is_alive (bool): 마지막 liveness 점검에 응답했는지 여부
        outbox_size (int): 전송 대기 큐 최대 길이
    """
    transport: Transport
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    role: Role = Role.UNASSIGNED
    viewer_id: Optional[str] = None
    is_alive: bool = True
    outbox_size: int = DEFAULT_OUTBOX_SIZE

    _outbox: Optional[asyncio.Queue] = field(default=None, init=False, repr=False)
    _writer: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    def send(self, message: dict) -> bool:
        """메시지를 전송 큐에 넣습니다 (fire-and-forget).

        Returns:
            bool: 큐에 들어갔으면 True. 종료된 연결이거나 큐가 가득 차면 False
        """
        if self._closed:
            return False
        if self._writer is None:
            self._outbox = asyncio.Queue(maxsize=self.outbox_size)
            self._writer = asyncio.create_task(self._drain_outbox())
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"연결 {self.id} 전송 큐 가득 참, 메시지 버림: type={message.get('type')}")
            return False
        return True

    async def _drain_outbox(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self.transport.send(message)
            except Exception as e:
                logger.error(f"연결 {self.id} 전송 중 오류: {e}")
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """큐에 있는 메시지가 모두 전송 시도될 때까지 기다립니다."""
        if self._outbox is not None and not self._closed:
            await self._outbox.join()

    async def close_outbox(self) -> None:
        """writer 태스크를 정지합니다. 남은 메시지는 버립니다."""
        self._closed = True
        if self._writer is None:
            return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        self._writer = None

        # flush() 대기자가 남지 않도록 남은 항목을 완료 처리
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()

    async def terminate(self, code: int = 1001) -> None:
        await self.transport.close(code=code)


@dataclass
class HubState:
    """허브의 공유 상태."""
    broadcaster: Optional[Connection] = None
    viewers: Dict[str, Connection] = field(default_factory=dict)
    connections: Dict[str, Connection] = field(default_factory=dict)


class SignalingHub:
    """연결 레지스트리와 메시지 라우팅을 담당하는 핵심 클래스.

    인스턴스마다 독립된 HubState를 가지므로 여러 허브를 동시에 사용할 수 있습니다
    (테스트, 멀티룸 확장 등).

    Attributes:
        state (HubState): broadcaster, viewers, connections 레지스트리
        replay_pending_viewers (bool): 새 broadcaster가 announce할 때
            이미 등록된 viewer들에 대한 viewer-join 알림을 보낼지 여부
        outbox_size (int): 연결별 전송 큐 최대 길이

    Examples:
        >>> hub = SignalingHub()
        >>> broadcaster = hub.register(ws_transport_1)
        >>> viewer = hub.register(ws_transport_2)
        >>> await hub.announce_broadcaster(broadcaster)
        >>> viewer_id = await hub.join_as_viewer(viewer)
    """

    def __init__(self, state: Optional[HubState] = None, replay_pending_viewers: bool = True,
                 outbox_size: int = DEFAULT_OUTBOX_SIZE):
        self.state = state if state is not None else HubState()
        self.replay_pending_viewers = replay_pending_viewers
        self.outbox_size = outbox_size

        self._handlers: Dict[type, Callable[[Connection, InboundMessage], Awaitable[None]]] = {
            BroadcasterReady: self._on_broadcaster_ready,
            ViewerJoin: self._on_viewer_join,
            Offer: self.relay_offer,
            Answer: self.relay_answer,
            IceCandidate: self.relay_ice_candidate,
            Unknown: self._on_unknown,
        }

    # ============================================================
    # 연결 등록 / 메시지 수신
    # ============================================================

    def register(self, transport: Transport) -> Connection:
        """새 연결을 UNASSIGNED 상태로 등록합니다.

        Args:
            transport: 연결의 전송 객체

        Returns:
            Connection: 등록된 연결
        """
        conn = Connection(transport=transport, outbox_size=self.outbox_size)
        self.state.connections[conn.id] = conn
        logger.info(f"연결 {conn.id} 등록됨 (총 {len(self.state.connections)}개)")
        return conn

    async def handle_raw(self, conn: Connection, raw: Union[str, bytes]) -> None:
        """수신한 원본 프레임을 디코딩하여 처리합니다.

        디코딩할 수 없는 프레임은 연결을 유지한 채 무시합니다.
        """
        conn.is_alive = True
        message = messages.decode_message(raw)
        if message is None:
            logger.debug(f"연결 {conn.id}의 잘못된 메시지 무시")
            return
        await self.dispatch(conn, message)

    async def dispatch(self, conn: Connection, message: InboundMessage) -> None:
        handler = self._handlers[type(message)]
        await handler(conn, message)

    async def flush(self) -> None:
        """등록된 모든 연결의 전송 큐가 비워질 때까지 기다립니다."""
        await asyncio.gather(*(conn.flush() for conn in list(self.state.connections.values())))

    # ============================================================
    # 역할 등록
    # ============================================================

    async def announce_broadcaster(self, conn: Connection) -> None:
        """연결을 현재 broadcaster로 지정합니다.

        이전 broadcaster 참조는 알림 없이 덮어씁니다. 이미 viewer인 연결은
        거부 메시지를 받고 상태는 바뀌지 않습니다. broadcaster가 바뀐 경우에만
        등록된 viewer들을 새 broadcaster에게 알립니다.

        Args:
            conn: broadcaster-ready를 보낸 연결
        """
        if conn.role is Role.VIEWER:
            logger.warning(f"viewer 연결 {conn.id}의 broadcaster-ready 거부")
            conn.send(messages.role_rejected(conn.role.value))
            return

        previous = self.state.broadcaster
        changed = previous is not conn
        conn.role = Role.BROADCASTER
        self.state.broadcaster = conn
        pending = list(self.state.viewers) if self.replay_pending_viewers and changed else []

        if previous is not None and changed:
            logger.info(f"broadcaster 교체: {previous.id} -> {conn.id}")
        elif changed:
            logger.info(f"broadcaster 등록: {conn.id}")
        else:
            logger.info(f"broadcaster {conn.id} 재등록")

        conn.send(messages.ack(Role.BROADCASTER.value))

        for viewer_id in pending:
            conn.send(messages.viewer_joined(viewer_id))
        if pending:
            logger.info(f"broadcaster {conn.id}에게 대기 중인 viewer {len(pending)}명 알림")

    async def join_as_viewer(self, conn: Connection) -> Optional[str]:
        """연결을 viewer로 등록하고 새 viewerId를 발급합니다.

        broadcaster가 있으면 viewer-join 알림을 보내 offer 생성을 요청합니다.
        없으면 viewer는 등록된 채로 broadcaster를 기다립니다.

        Args:
            conn: viewer-join을 보낸 연결

        Returns:
            Optional[str]: 발급된 viewerId. 이미 역할이 있는 연결이면 None
        """
        if conn.role is not Role.UNASSIGNED:
            logger.warning(f"{conn.role.value} 연결 {conn.id}의 viewer-join 거부")
            conn.send(messages.role_rejected(conn.role.value))
            return None

        viewer_id = str(uuid.uuid4())
        conn.role = Role.VIEWER
        conn.viewer_id = viewer_id
        self.state.viewers[viewer_id] = conn
        broadcaster = self.state.broadcaster

        logger.info(f"viewer {viewer_id} 등록 (연결 {conn.id}). 총 viewer {len(self.state.viewers)}명")

        conn.send(messages.ack(Role.VIEWER.value, viewer_id))
        if broadcaster is not None:
            broadcaster.send(messages.viewer_joined(viewer_id))
        else:
            logger.info(f"broadcaster 없음, viewer {viewer_id} 대기")
        return viewer_id

    # ============================================================
    # 중계
    # ============================================================

    async def relay_offer(self, conn: Connection, message: Offer) -> None:
        """broadcaster의 offer를 해당 viewer에게 전달합니다."""
        viewer = self.state.viewers.get(message.viewer_id)
        if viewer is None:
            logger.debug(f"offer 대상 viewer {message.viewer_id} 없음")
            return
        viewer.send(messages.relay_offer(message))

    async def relay_answer(self, conn: Connection, message: Answer) -> None:
        """viewer의 answer를 broadcaster에게 전달합니다."""
        broadcaster = self.state.broadcaster
        if broadcaster is None:
            logger.debug(f"broadcaster 없음, viewer {message.viewer_id}의 answer 무시")
            return
        broadcaster.send(messages.relay_answer(message))

    async def relay_ice_candidate(self, conn: Connection, message: IceCandidate) -> None:
        """ICE candidate를 from 필드에 따라 상대방에게 전달합니다."""
        if message.sender == "broadcaster":
            target = self.state.viewers.get(message.viewer_id)
        else:
            target = self.state.broadcaster

        if target is None:
            logger.debug(f"ice-candidate 대상 없음 (from={message.sender}, viewerId={message.viewer_id})")
            return
        target.send(messages.relay_candidate(message))

    async def _on_broadcaster_ready(self, conn: Connection, message: BroadcasterReady) -> None:
        await self.announce_broadcaster(conn)

    async def _on_viewer_join(self, conn: Connection, message: ViewerJoin) -> None:
        await self.join_as_viewer(conn)

    async def _on_unknown(self, conn: Connection, message: Unknown) -> None:
        logger.warning(f"알 수 없는 메시지 타입: {message.type}")

    # ============================================================
    # 연결 종료
    # ============================================================

    async def disconnect(self, conn: Connection) -> None:
        """종료된 연결을 레지스트리에서 제거하고 상대방에게 알립니다.

        - broadcaster였다면 참조를 비우고 모든 viewer에게 end 전송
        - 등록된 viewer였다면 항목을 제거하고 broadcaster에게 viewer-left 전송

        이미 제거된 연결에 대해 다시 호출해도 아무 일도 일어나지 않습니다.

        Args:
            conn: 종료된 연결
        """
        self.state.connections.pop(conn.id, None)

        notify_viewers: List[Connection] = []
        if self.state.broadcaster is conn:
            self.state.broadcaster = None
            notify_viewers = list(self.state.viewers.values())
            logger.info(f"broadcaster {conn.id} 종료. viewer {len(notify_viewers)}명에게 end 전송")

        left_viewer_id = None
        if conn.viewer_id is not None and self.state.viewers.get(conn.viewer_id) is conn:
            del self.state.viewers[conn.viewer_id]
            left_viewer_id = conn.viewer_id
            logger.info(f"viewer {left_viewer_id} 종료. 남은 viewer {len(self.state.viewers)}명")

        broadcaster = self.state.broadcaster

        for viewer in notify_viewers:
            viewer.send(messages.end())
        if left_viewer_id is not None and broadcaster is not None:
            broadcaster.send(messages.viewer_left(left_viewer_id))

        await conn.close_outbox()

    async def close_all(self, code: int = 1001) -> None:
        """열린 모든 연결을 종료합니다 (서버 종료 시)."""
        connections = list(self.state.connections.values())
        for conn in connections:
            await conn.terminate(code=code)
            await self.disconnect(conn)
        logger.info(f"연결 {len(connections)}개 정리 완료")

    def get_stats(self) -> dict:
        """허브 상태 요약을 반환합니다.

        Returns:
            dict: connections(열린 연결 수), viewers(viewer 수),
                broadcaster(broadcaster 존재 여부)
        """
        return {
            "connections": len(self.state.connections),
            "viewers": len(self.state.viewers),
            "broadcaster": self.state.broadcaster is not None,
        }
