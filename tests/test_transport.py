from __future__ import annotations

import asyncio
import json

import pytest

from scale_relay.transport import WebSocketTransport


class RecordingWebSocket:
    remote_address = ("10.0.0.5", 51000)

    def __init__(self) -> None:
        self.events: list[tuple] = []

    async def send(self, data: str) -> None:
        self.events.append(("send", json.loads(data)))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.events.append(("close", code, reason))


@pytest.mark.asyncio
async def test_reply_is_flushed_before_close():
    ws = RecordingWebSocket()
    t = WebSocketTransport(ws)
    t.start()

    assert t.send({"status": "Merged into existing connection"}) is True
    t.close(4003, "Merged")
    await t.wait_flushed()

    assert ws.events == [
        ("send", {"status": "Merged into existing connection"}),
        ("close", 4003, "Merged"),
    ]
    assert t.remote == "10.0.0.5:51000"


@pytest.mark.asyncio
async def test_send_after_close_is_refused():
    ws = RecordingWebSocket()
    t = WebSocketTransport(ws)
    t.start()

    t.close(4001, "Scale disconnected")
    t.close(4002, "Inactive for 1 hour")

    assert t.is_open is False
    assert t.send({"weight": 1}) is False
    await t.wait_flushed()
    assert ws.events == [("close", 4001, "Scale disconnected")]
    assert t.close_code == 4001


@pytest.mark.asyncio
async def test_full_queue_drops_frames_but_not_the_close():
    ws = RecordingWebSocket()
    t = WebSocketTransport(ws, queue_size=2)

    assert t.send({"weight": 1}) is True
    assert t.send({"weight": 2}) is True
    assert t.send({"weight": 3}) is False
    t.close(4002, "Inactive for 1 hour")
    t.start()
    await t.wait_flushed()

    assert ws.events == [("close", 4002, "Inactive for 1 hour")]


@pytest.mark.asyncio
async def test_mark_closed_stops_writer():
    t = WebSocketTransport(RecordingWebSocket())
    t.start()
    await asyncio.sleep(0)

    t.mark_closed()
    await t.wait_flushed()

    assert t.is_open is False
    assert t.send({"weight": 1}) is False
