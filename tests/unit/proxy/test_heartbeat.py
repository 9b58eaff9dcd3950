"""
Tests unitaires du relais SSE (heartbeat, nettoyage, framing).
"""
import asyncio

import pytest

from llm_gateway.core.constants import HEARTBEAT_FRAME
from llm_gateway.proxy.stream import Heartbeat, relay_with_heartbeat, sse_data, sse_event

pytestmark = pytest.mark.anyio


def test_sse_framing():
    assert sse_data({"a": "é"}) == 'data: {"a":"é"}\n\n'
    assert sse_event("ping", {"type": "ping"}) == 'event: ping\ndata: {"type":"ping"}\n\n'


async def test_heartbeat_emits_until_stopped():
    queue = asyncio.Queue()
    heartbeat = Heartbeat(queue, 0.01)

    heartbeat.start()
    await asyncio.sleep(0.05)
    await heartbeat.stop()
    beats = heartbeat.beats
    await asyncio.sleep(0.03)

    assert not heartbeat.running
    assert beats >= 1
    assert heartbeat.beats == beats
    assert queue.get_nowait() == HEARTBEAT_FRAME


async def test_stop_is_idempotent():
    heartbeat = Heartbeat(asyncio.Queue(), 1.0)

    await heartbeat.stop()
    heartbeat.start()
    await heartbeat.stop()
    await heartbeat.stop()

    assert not heartbeat.running


async def test_relay_interleaves_heartbeats_with_slow_frames():
    async def frames():
        yield "data: 1\n\n"
        await asyncio.sleep(0.06)
        yield "data: 2\n\n"

    out = [frame async for frame in relay_with_heartbeat(frames(), 0.01)]

    assert out[0] == "data: 1\n\n"
    assert out[-1] == "data: 2\n\n"
    assert HEARTBEAT_FRAME in out


async def test_relay_without_heartbeat_when_interval_zero():
    async def frames():
        yield "data: 1\n\n"
        await asyncio.sleep(0.02)
        yield "data: 2\n\n"

    out = [frame async for frame in relay_with_heartbeat(frames(), 0)]

    assert out == ["data: 1\n\n", "data: 2\n\n"]


async def test_relay_reraises_producer_error_after_cleanup():
    closed = []

    async def frames():
        try:
            yield "data: 1\n\n"
            raise RuntimeError("upstream broke")
        finally:
            closed.append(True)

    out = []
    with pytest.raises(RuntimeError, match="upstream broke"):
        async for frame in relay_with_heartbeat(frames(), 0.01):
            out.append(frame)

    assert out[0] == "data: 1\n\n"
    assert closed == [True]


async def test_relay_cancels_producer_when_consumer_stops():
    cancelled = []

    async def frames():
        try:
            yield "data: 1\n\n"
            await asyncio.sleep(10)
            yield "data: never\n\n"
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    relay = relay_with_heartbeat(frames(), 5.0)
    assert await relay.__anext__() == "data: 1\n\n"
    await relay.aclose()

    assert cancelled == [True]
