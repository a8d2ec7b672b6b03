"""공용 pytest fixture."""

import json
import os

# app 모듈 import 전에 테스트용 환경 설정
os.environ.setdefault("LOG_DIR", "")
os.environ.setdefault("STATIC_DIR", "")
os.environ.setdefault("PING_INTERVAL", "0")

import pytest
import pytest_asyncio

from modules import SignalingHub


class FakeTransport:
    """전송된 메시지를 기록하는 메모리 Transport.

    connected를 False로 바꾸면 전송 계층이 상대방을 잃은 상태를 흉내냅니다.
    """

    def __init__(self):
        self.sent = []
        self.closed = False
        self.close_code = None
        self.connected = True

    async def send(self, message: dict) -> bool:
        if self.closed:
            return False
        self.sent.append(message)
        return True

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code

    async def is_connected(self) -> bool:
        return self.connected and not self.closed

    def of_type(self, message_type: str) -> list:
        return [m for m in self.sent if m["type"] == message_type]


@pytest_asyncio.fixture
async def hub():
    hub = SignalingHub()
    yield hub
    for conn in list(hub.state.connections.values()):
        await conn.close_outbox()


@pytest.fixture
def connect(hub):
    """허브에 새 연결을 등록하고 (Connection, FakeTransport)를 반환하는 팩토리."""
    def _connect(target=None):
        transport = FakeTransport()
        conn = (target or hub).register(transport)
        return conn, transport
    return _connect


@pytest.fixture
def send(hub):
    """메시지를 JSON 텍스트 프레임으로 허브에 전달하고 전송 큐를 비우는 헬퍼."""
    async def _send(conn, message: dict, target=None):
        await (target or hub).handle_raw(conn, json.dumps(message))
        await (target or hub).flush()
    return _send
