"""SignalingHub 테스트."""

import asyncio
import json

import pytest

from modules import Role, SignalingHub

pytestmark = pytest.mark.asyncio


async def _broadcaster(connect, send):
    conn, transport = connect()
    await send(conn, {"type": "broadcaster-ready"})
    return conn, transport


async def _viewer(connect, send):
    conn, transport = connect()
    await send(conn, {"type": "viewer-join"})
    return conn, transport, transport.sent[0]["viewerId"]


class TestRegistration:
    async def test_broadcaster_ready_acks(self, hub, connect, send):
        conn, transport = await _broadcaster(connect, send)

        assert transport.sent == [{"type": "ack", "role": "broadcaster"}]
        assert hub.state.broadcaster is conn
        assert conn.role is Role.BROADCASTER

    async def test_viewer_join_acks_and_notifies_broadcaster(self, hub, connect, send):
        _, b_transport = await _broadcaster(connect, send)
        conn, v_transport, viewer_id = await _viewer(connect, send)

        assert v_transport.sent == [{"type": "ack", "role": "viewer", "viewerId": viewer_id}]
        assert b_transport.sent[-1] == {"type": "viewer-join", "viewerId": viewer_id}
        assert hub.state.viewers[viewer_id] is conn
        assert conn.role is Role.VIEWER
        assert conn.viewer_id == viewer_id

    async def test_viewer_ids_are_unique(self, hub, connect, send):
        ids = set()
        for _ in range(50):
            _, _, viewer_id = await _viewer(connect, send)
            ids.add(viewer_id)

        assert len(ids) == 50
        assert set(hub.state.viewers) == ids

    async def test_viewer_without_broadcaster_stays_registered(self, hub, connect, send):
        conn, transport, viewer_id = await _viewer(connect, send)

        assert hub.state.broadcaster is None
        assert hub.state.viewers[viewer_id] is conn
        assert len(transport.sent) == 1

    async def test_newer_broadcaster_supersedes_previous(self, hub, connect, send):
        old, old_transport = await _broadcaster(connect, send)
        new, new_transport = await _broadcaster(connect, send)

        assert hub.state.broadcaster is new
        assert old_transport.sent == [{"type": "ack", "role": "broadcaster"}]

        viewer, _, viewer_id = await _viewer(connect, send)
        await send(viewer, {"type": "answer", "viewerId": viewer_id, "sdp": "A"})
        await send(viewer, {"type": "ice-candidate", "viewerId": viewer_id,
                            "candidate": "C", "from": "viewer"})

        assert old_transport.sent == [{"type": "ack", "role": "broadcaster"}]
        assert new_transport.sent[1:] == [
            {"type": "viewer-join", "viewerId": viewer_id},
            {"type": "answer", "sdp": "A", "viewerId": viewer_id},
            {"type": "ice-candidate", "candidate": "C", "viewerId": viewer_id},
        ]

    async def test_broadcaster_may_reannounce(self, hub, connect, send):
        conn, transport = await _broadcaster(connect, send)
        await send(conn, {"type": "broadcaster-ready"})

        assert transport.sent == [{"type": "ack", "role": "broadcaster"}] * 2
        assert hub.state.broadcaster is conn

    async def test_reannounce_does_not_replay_viewers(self, hub, connect, send):
        _, _, early_id = await _viewer(connect, send)
        conn, transport = await _broadcaster(connect, send)
        _, _, late_id = await _viewer(connect, send)

        await send(conn, {"type": "broadcaster-ready"})

        assert transport.sent == [
            {"type": "ack", "role": "broadcaster"},
            {"type": "viewer-join", "viewerId": early_id},
            {"type": "viewer-join", "viewerId": late_id},
            {"type": "ack", "role": "broadcaster"},
        ]


class TestRoleConflicts:
    async def test_viewer_cannot_become_broadcaster(self, hub, connect, send):
        conn, transport, viewer_id = await _viewer(connect, send)
        await send(conn, {"type": "broadcaster-ready"})

        assert transport.sent[-1] == {"type": "error", "reason": "role-already-assigned", "role": "viewer"}
        assert hub.state.broadcaster is None
        assert hub.state.viewers[viewer_id] is conn

    async def test_broadcaster_cannot_join_as_viewer(self, hub, connect, send):
        conn, transport = await _broadcaster(connect, send)
        await send(conn, {"type": "viewer-join"})

        assert transport.sent[-1] == {"type": "error", "reason": "role-already-assigned", "role": "broadcaster"}
        assert hub.state.viewers == {}
        assert conn.role is Role.BROADCASTER

    async def test_second_viewer_join_keeps_viewer_id(self, hub, connect, send):
        conn, transport, viewer_id = await _viewer(connect, send)
        await send(conn, {"type": "viewer-join"})

        assert transport.sent[-1]["type"] == "error"
        assert list(hub.state.viewers) == [viewer_id]
        assert conn.viewer_id == viewer_id


class TestPendingViewerReplay:
    async def test_broadcaster_receives_viewers_that_joined_earlier(self, hub, connect, send):
        _, _, first = await _viewer(connect, send)
        _, _, second = await _viewer(connect, send)
        _, transport = await _broadcaster(connect, send)

        assert transport.sent[0] == {"type": "ack", "role": "broadcaster"}
        assert sorted(transport.sent[1:], key=lambda m: m["viewerId"]) == sorted(
            [{"type": "viewer-join", "viewerId": first}, {"type": "viewer-join", "viewerId": second}],
            key=lambda m: m["viewerId"],
        )

    async def test_replay_disabled_keeps_viewers_unpaired(self, connect, send):
        hub = SignalingHub(replay_pending_viewers=False)
        viewer, _ = connect(hub)
        await send(viewer, {"type": "viewer-join"}, target=hub)
        broadcaster, transport = connect(hub)
        await send(broadcaster, {"type": "broadcaster-ready"}, target=hub)

        assert transport.sent == [{"type": "ack", "role": "broadcaster"}]


class TestRelay:
    async def test_scenario(self, hub, connect, send):
        broadcaster, b_transport = await _broadcaster(connect, send)
        viewer, v_transport, viewer_id = await _viewer(connect, send)

        await send(broadcaster, {"type": "offer", "viewerId": viewer_id, "sdp": "X"})

        assert b_transport.sent == [
            {"type": "ack", "role": "broadcaster"},
            {"type": "viewer-join", "viewerId": viewer_id},
        ]
        assert v_transport.sent == [
            {"type": "ack", "role": "viewer", "viewerId": viewer_id},
            {"type": "offer", "sdp": "X", "viewerId": viewer_id},
        ]

    async def test_payloads_pass_through_unchanged(self, hub, connect, send):
        broadcaster, b_transport = await _broadcaster(connect, send)
        viewer, v_transport, viewer_id = await _viewer(connect, send)

        offer_sdp = {"type": "offer", "sdp": "v=0\r\no=- 46117 2 IN IP4 127.0.0.1\r\n"}
        answer_sdp = {"type": "answer", "sdp": "v=0\r\na=ice-ufrag:F7gI\r\n"}
        candidate = {"candidate": "candidate:1 1 udp 2122260223 10.0.0.2 54321 typ host",
                     "sdpMid": "0", "sdpMLineIndex": 0}

        await send(broadcaster, {"type": "offer", "viewerId": viewer_id, "sdp": offer_sdp, "extra": 1})
        await send(viewer, {"type": "answer", "viewerId": viewer_id, "sdp": answer_sdp})
        await send(broadcaster, {"type": "ice-candidate", "viewerId": viewer_id,
                                 "candidate": candidate, "from": "broadcaster"})
        await send(viewer, {"type": "ice-candidate", "viewerId": viewer_id,
                            "candidate": candidate, "from": "viewer"})

        assert v_transport.sent[1:] == [
            {"type": "offer", "sdp": offer_sdp, "viewerId": viewer_id},
            {"type": "ice-candidate", "candidate": candidate, "viewerId": viewer_id},
        ]
        assert b_transport.sent[2:] == [
            {"type": "answer", "sdp": answer_sdp, "viewerId": viewer_id},
            {"type": "ice-candidate", "candidate": candidate, "viewerId": viewer_id},
        ]

    async def test_offer_to_unknown_viewer_is_dropped(self, hub, connect, send):
        broadcaster, b_transport = await _broadcaster(connect, send)
        _, v_transport, viewer_id = await _viewer(connect, send)
        before = (hub.state.broadcaster, dict(hub.state.viewers), dict(hub.state.connections))
        sent_before = (len(b_transport.sent), len(v_transport.sent))

        await send(broadcaster, {"type": "offer", "viewerId": "no-such-viewer", "sdp": "X"})

        assert (hub.state.broadcaster, hub.state.viewers, hub.state.connections) == before
        assert (len(b_transport.sent), len(v_transport.sent)) == sent_before

    async def test_answer_without_broadcaster_is_dropped(self, hub, connect, send):
        viewer, transport, viewer_id = await _viewer(connect, send)
        await send(viewer, {"type": "answer", "viewerId": viewer_id, "sdp": "A"})

        assert len(transport.sent) == 1

    @pytest.mark.parametrize("message", [
        {"type": "offer", "sdp": "X"},
        {"type": "offer", "viewerId": "VID"},
        {"type": "offer", "viewerId": "", "sdp": "X"},
        {"type": "answer", "viewerId": "VID"},
        {"type": "ice-candidate", "viewerId": "VID", "candidate": "C"},
        {"type": "ice-candidate", "viewerId": "VID", "candidate": "C", "from": "someone"},
        {"type": "ice-candidate", "viewerId": "VID", "from": "viewer"},
        {"type": "mute"},
    ])
    async def test_incomplete_or_unknown_messages_are_dropped(self, hub, connect, send, message):
        broadcaster, b_transport = await _broadcaster(connect, send)
        viewer, v_transport, viewer_id = await _viewer(connect, send)
        message = {k: (viewer_id if v == "VID" else v) for k, v in message.items()}

        await send(broadcaster, message)
        await send(viewer, message)

        assert len(b_transport.sent) == 2
        assert len(v_transport.sent) == 1

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"text"', '{"no": "type"}', '{"type": 5}', b"\xff\xfe",
                                     "[" * 200000 + "]" * 200000])
    async def test_malformed_frames_keep_connection_open(self, hub, connect, raw):
        conn, transport = connect()
        await hub.handle_raw(conn, raw)

        assert transport.sent == []
        assert transport.closed is False
        assert hub.state.connections[conn.id] is conn
        assert conn.role is Role.UNASSIGNED


class TestDisconnect:
    async def test_broadcaster_disconnect_ends_every_viewer(self, hub, connect, send):
        broadcaster, b_transport = await _broadcaster(connect, send)
        viewers = [await _viewer(connect, send) for _ in range(3)]

        await hub.disconnect(broadcaster)
        await hub.flush()

        assert hub.state.broadcaster is None
        for _, transport, _ in viewers:
            assert transport.of_type("end") == [{"type": "end"}]
        assert len(hub.state.viewers) == 3

        sent_before = len(b_transport.sent)
        await _viewer(connect, send)
        assert len(b_transport.sent) == sent_before

    async def test_viewer_disconnect_notifies_broadcaster_once(self, hub, connect, send):
        _, b_transport = await _broadcaster(connect, send)
        leaving, _, leaving_id = await _viewer(connect, send)
        staying, _, staying_id = await _viewer(connect, send)

        await hub.disconnect(leaving)
        await hub.disconnect(leaving)
        await hub.flush()

        assert b_transport.of_type("viewer-left") == [{"type": "viewer-left", "viewerId": leaving_id}]
        assert hub.state.viewers == {staying_id: staying}
        assert leaving.id not in hub.state.connections

    async def test_viewer_disconnect_without_broadcaster(self, hub, connect, send):
        viewer, _, viewer_id = await _viewer(connect, send)
        await hub.disconnect(viewer)

        assert viewer_id not in hub.state.viewers

    async def test_superseded_broadcaster_disconnect_is_quiet(self, hub, connect, send):
        old, _ = await _broadcaster(connect, send)
        new, _ = await _broadcaster(connect, send)
        _, v_transport, _ = await _viewer(connect, send)

        await hub.disconnect(old)
        await hub.flush()

        assert hub.state.broadcaster is new
        assert v_transport.of_type("end") == []

    async def test_unassigned_disconnect_only_unregisters(self, hub, connect, send):
        _, b_transport = await _broadcaster(connect, send)
        conn, _ = connect()

        await hub.disconnect(conn)
        await hub.flush()

        assert conn.id not in hub.state.connections
        assert len(b_transport.sent) == 1

    async def test_close_all_terminates_connections(self, hub, connect, send):
        _, b_transport = await _broadcaster(connect, send)
        _, v_transport, _ = await _viewer(connect, send)

        await hub.close_all()

        assert b_transport.closed and v_transport.closed
        assert hub.get_stats() == {"connections": 0, "viewers": 0, "broadcaster": False}



class SlowTransport:
    """release가 설정될 때까지 전송을 멈추고 있는 Transport."""

    def __init__(self):
        self.sent = []
        self.release = asyncio.Event()

    async def send(self, message: dict) -> bool:
        await self.release.wait()
        self.sent.append(message)
        return True

    async def close(self, code: int = 1000) -> None:
        pass

    async def is_connected(self) -> bool:
        return True

    def of_type(self, message_type: str) -> list:
        return [m for m in self.sent if m["type"] == message_type]


class TestSlowReceiver:
    async def test_relay_does_not_wait_for_slow_receiver(self, hub, connect):
        slow = SlowTransport()
        broadcaster = hub.register(slow)
        await hub.handle_raw(broadcaster, json.dumps({"type": "broadcaster-ready"}))
        viewer, _ = connect()
        await hub.handle_raw(viewer, json.dumps({"type": "viewer-join"}))
        viewer_id = viewer.viewer_id

        for n in range(3):
            frame = {"type": "ice-candidate", "viewerId": viewer_id, "candidate": f"c{n}", "from": "viewer"}
            await asyncio.wait_for(hub.handle_raw(viewer, json.dumps(frame)), timeout=1)

        other, o_transport = connect()
        await asyncio.wait_for(hub.handle_raw(other, json.dumps({"type": "viewer-join"})), timeout=1)
        await other.flush()

        assert o_transport.sent == [{"type": "ack", "role": "viewer", "viewerId": other.viewer_id}]
        assert slow.sent == []

        slow.release.set()
        await hub.flush()

        assert [m["type"] for m in slow.sent] == [
            "ack", "viewer-join", "ice-candidate", "ice-candidate", "ice-candidate", "viewer-join",
        ]
        assert [m["candidate"] for m in slow.of_type("ice-candidate")] == ["c0", "c1", "c2"]

    async def test_full_outbox_drops_messages(self):
        hub = SignalingHub(outbox_size=2)
        slow = SlowTransport()
        conn = hub.register(slow)

        results = [conn.send({"type": "end"}) for _ in range(4)]
        slow.release.set()
        await conn.flush()
        await conn.close_outbox()

        assert results == [True, True, False, False]
        assert slow.sent == [{"type": "end"}, {"type": "end"}]
        assert conn.send({"type": "end"}) is False


async def test_stats(hub, connect, send):
    await _broadcaster(connect, send)
    await _viewer(connect, send)
    connect()

    assert hub.get_stats() == {"connections": 3, "viewers": 1, "broadcaster": True}


async def test_hubs_do_not_share_state(connect, send):
    first, second = SignalingHub(), SignalingHub()
    conn, _ = connect(first)
    await send(conn, {"type": "broadcaster-ready"}, target=first)

    assert first.state.broadcaster is conn
    assert second.state.broadcaster is None
    assert second.state.connections == {}
