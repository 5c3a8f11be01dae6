"""Stream bridge tests: frame sequence, finalization and interruption paths."""

import asyncio
import json

import httpx
import pytest

from app.services.stream_bridge import DONE_FRAME, BridgeState, StreamBridge, format_sse


class Recorder:
    """Stands in for the message store's assistant append."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[str] = []
        self.fail = fail

    async def __call__(self, text: str) -> None:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("database unavailable")


class Fragments:
    """Closable fragment source that can fail after its fragments."""

    def __init__(self, *fragments: str, error: Exception | None = None, hang: bool = False) -> None:
        self.fragments = fragments
        self.error = error
        self.hang = hang
        self.closed = False

    async def __aiter__(self):
        for fragment in self.fragments:
            yield fragment
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


def _content(frames: list[str]) -> str:
    text = ""
    for frame in frames:
        payload = frame.removeprefix("data: ").rstrip("\n")
        if payload != "[DONE]":
            text += json.loads(payload).get("content", "")
    return text


def test_format_sse_is_compact():
    assert format_sse({"content": "4"}) == 'data: {"content":"4"}\n\n'
    assert format_sse({"content": "é"}) == 'data: {"content":"é"}\n\n'


@pytest.mark.asyncio
async def test_completed_turn():
    persist = Recorder()
    source = Fragments("4", ".")
    bridge = StreamBridge(source, persist, chat_id="c1")
    assert bridge.state is BridgeState.STARTING

    frames = [f async for f in bridge.stream()]

    assert frames == ['data: {"content":"4"}\n\n', 'data: {"content":"."}\n\n', DONE_FRAME]
    assert persist.calls == ["4."]
    assert _content(frames) == persist.calls[0]
    assert bridge.state is BridgeState.FINALIZED
    assert bridge.end_state is BridgeState.COMPLETED
    assert source.closed


@pytest.mark.asyncio
async def test_provider_drop_persists_partial_and_still_sends_done():
    persist = Recorder()
    source = Fragments("Hel", "lo", error=httpx.RemoteProtocolError("peer closed connection"))
    bridge = StreamBridge(source, persist)

    frames = [f async for f in bridge.stream()]

    assert frames[:2] == [format_sse({"content": "Hel"}), format_sse({"content": "lo"})]
    assert json.loads(frames[2].removeprefix("data: "))["error"]
    assert frames[-1] == DONE_FRAME
    assert persist.calls == ["Hello"]
    assert bridge.end_state is BridgeState.INTERRUPTED
    assert isinstance(bridge.error, httpx.RemoteProtocolError)


@pytest.mark.asyncio
async def test_provider_drop_before_any_fragment_persists_nothing():
    persist = Recorder()
    bridge = StreamBridge(Fragments(error=httpx.ReadTimeout("idle")), persist)

    frames = [f async for f in bridge.stream()]

    assert len(frames) == 2
    assert "error" in json.loads(frames[0].removeprefix("data: "))
    assert frames[1] == DONE_FRAME
    assert persist.calls == []
    assert bridge.end_state is BridgeState.INTERRUPTED


@pytest.mark.asyncio
async def test_empty_completion_persists_nothing():
    persist = Recorder()
    bridge = StreamBridge(Fragments(), persist)

    frames = [f async for f in bridge.stream()]

    assert frames == [DONE_FRAME]
    assert persist.calls == []
    assert bridge.end_state is BridgeState.COMPLETED


@pytest.mark.asyncio
async def test_client_disconnect_persists_what_was_generated():
    persist = Recorder()
    source = Fragments("first", "second", "third")
    bridge = StreamBridge(source, persist)

    frames = bridge.stream()
    assert await frames.__anext__() == format_sse({"content": "first"})
    await frames.aclose()  # client went away mid-stream

    assert persist.calls == ["first"]
    assert bridge.state is BridgeState.FINALIZED
    assert bridge.end_state is BridgeState.INTERRUPTED
    assert source.closed


@pytest.mark.asyncio
async def test_cancellation_while_waiting_for_provider():
    persist = Recorder()
    bridge = StreamBridge(Fragments("partial", hang=True), persist)
    received: list[str] = []

    async def consume():
        async for frame in bridge.stream():
            received.append(frame)

    task = asyncio.create_task(consume())
    for _ in range(20):
        await asyncio.sleep(0)
        if received:
            break
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert received == [format_sse({"content": "partial"})]
    assert persist.calls == ["partial"]
    assert bridge.end_state is BridgeState.INTERRUPTED


@pytest.mark.asyncio
async def test_persist_failure_is_not_raised_to_client():
    persist = Recorder(fail=True)
    bridge = StreamBridge(Fragments("saved?"), persist)

    frames = [f async for f in bridge.stream()]

    assert frames[-1] == DONE_FRAME
    assert persist.calls == ["saved?"]
    assert bridge.state is BridgeState.FINALIZED


@pytest.mark.asyncio
async def test_finalizes_exactly_once():
    persist = Recorder()
    bridge = StreamBridge(Fragments("x"), persist)

    frames = bridge.stream()
    async for frame in frames:
        if frame == DONE_FRAME:
            break
    await frames.aclose()

    assert persist.calls == ["x"]


@pytest.mark.asyncio
async def test_bridge_cannot_be_restarted():
    bridge = StreamBridge(Fragments("x"), Recorder())
    [f async for f in bridge.stream()]

    with pytest.raises(RuntimeError):
        async for _ in bridge.stream():
            pass
