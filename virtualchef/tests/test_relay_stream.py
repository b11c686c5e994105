import asyncio
import errno
import logging

import httpx
import pytest

from virtualchef.core.cancellation import AbortSignal
from virtualchef.core.errors import UpstreamStreamError
from virtualchef.relay.response import RelayStreamingResponse
from virtualchef.relay.stream import RelayStream, StreamState


class ScriptedUpstream:
    """Async generator stand-in that records how far it was pulled and whether it was closed."""

    def __init__(self, chunks: list[str], error: BaseException | None = None, hang_after: int | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.hang_after = hang_after
        self.requested = 0
        self.closed = False

    async def run(self):
        try:
            for index, chunk in enumerate(self.chunks):
                if self.hang_after is not None and index >= self.hang_after:
                    await asyncio.Event().wait()
                self.requested += 1
                yield chunk
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class CapturingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def errors(self) -> list[logging.LogRecord]:
        return [record for record in self.records if record.levelno >= logging.ERROR]


@pytest.fixture
def captured_logs():
    # the project logger does not propagate to root, so caplog never sees it
    handler = CapturingHandler()
    project_logger = logging.getLogger("virtualchef")
    project_logger.addHandler(handler)
    try:
        yield handler
    finally:
        project_logger.removeHandler(handler)


def _stream(upstream: ScriptedUpstream, signal: AbortSignal | None = None, states: list | None = None) -> RelayStream:
    return RelayStream(
        upstream.run(),
        signal or AbortSignal(),
        request_id="req-test",
        on_finish=(states.append if states is not None else None),
    )


@pytest.mark.asyncio
async def test_forwards_chunks_verbatim_and_completes():
    states: list[StreamState] = []
    upstream = ScriptedUpstream(["Halo", " ", "dunia"])
    relay = _stream(upstream, states=states)

    out = [chunk async for chunk in relay]

    assert out == [b"Halo", b" ", b"dunia"]
    assert relay.state is StreamState.COMPLETED
    assert states == [StreamState.COMPLETED]
    assert upstream.closed is True


@pytest.mark.asyncio
async def test_abort_after_two_chunks_stops_pulling_upstream():
    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo", " ", "dunia"])
    relay = _stream(upstream, signal=signal)

    out: list[bytes] = []
    async for chunk in relay:
        out.append(chunk)
        if len(out) == 2:
            signal.abort("client_disconnected")

    assert out == [b"Halo", b" "]
    assert upstream.requested == 2
    assert upstream.closed is True
    assert relay.state is StreamState.ABORTED_CLEAN


@pytest.mark.asyncio
async def test_abort_interrupts_pending_upstream_read():
    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo", "never"], hang_after=1)
    relay = _stream(upstream, signal=signal)

    first = await relay.__anext__()
    asyncio.get_running_loop().call_later(0.05, signal.abort, "client_disconnected")
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(relay.__anext__(), timeout=2)

    assert first == b"Halo"
    assert upstream.requested == 1
    assert relay.state is StreamState.ABORTED_CLEAN


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        ConnectionResetError(errno.ECONNRESET, "Connection reset by peer"),
        BrokenPipeError(errno.EPIPE, "Broken pipe"),
        OSError(errno.ECONNRESET, "reset"),
    ],
)
async def test_transport_reset_after_start_closes_silently(captured_logs, error):
    upstream = ScriptedUpstream(["Halo"], error=error)
    relay = _stream(upstream)

    out = [chunk async for chunk in relay]

    assert out == [b"Halo"]
    assert relay.state is StreamState.ABORTED_CLEAN
    assert captured_logs.errors() == []


@pytest.mark.asyncio
async def test_httpx_read_error_caused_by_reset_closes_silently():
    try:
        try:
            raise ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")
        except ConnectionResetError as inner:
            raise httpx.ReadError("read failed") from inner
    except httpx.ReadError as exc:
        wrapped = exc
    upstream = ScriptedUpstream(["Halo"], error=wrapped)
    relay = _stream(upstream)

    out = [chunk async for chunk in relay]

    assert out == [b"Halo"]
    assert relay.state is StreamState.ABORTED_CLEAN


@pytest.mark.asyncio
async def test_other_failure_after_start_is_logged_and_errors_stream(captured_logs):
    states: list[StreamState] = []
    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo"], error=ValueError("model exploded"))
    relay = _stream(upstream, signal=signal, states=states)

    out: list[bytes] = []
    with pytest.raises(UpstreamStreamError) as excinfo:
        async for chunk in relay:
            out.append(chunk)

    assert out == [b"Halo"]
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert relay.state is StreamState.ERRORED_MID_STREAM
    assert states == [StreamState.ERRORED_MID_STREAM]
    errors = captured_logs.errors()
    assert len(errors) == 1
    assert "model exploded" in errors[0].getMessage()
    assert errors[0].request_id == "req-test"
    assert errors[0].outcome == "errored_mid_stream"
    assert signal.aborted is True


@pytest.mark.asyncio
async def test_consumer_close_mid_stream_aborts_signal_and_upstream():
    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo", " ", "dunia"])
    relay = _stream(upstream, signal=signal)

    assert await relay.__anext__() == b"Halo"
    await relay.aclose()

    assert signal.aborted is True
    assert signal.reason == "consumer_cancelled"
    assert upstream.requested == 1
    assert upstream.closed is True
    assert relay.state is StreamState.ABORTED_CLEAN


@pytest.mark.asyncio
async def test_disconnect_watcher_aborts_stream():
    polls = 0

    async def is_disconnected() -> bool:
        nonlocal polls
        polls += 1
        return polls >= 2

    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo", "never"], hang_after=1)
    relay = RelayStream(
        upstream.run(),
        signal,
        request_id="req-watch",
        is_disconnected=is_disconnected,
        disconnect_poll_interval=0.01,
    )

    out = await asyncio.wait_for(_drain(relay), timeout=2)

    assert out == [b"Halo"]
    assert signal.reason == "client_disconnected"
    assert relay.state is StreamState.ABORTED_CLEAN


async def _drain(relay: RelayStream) -> list[bytes]:
    return [chunk async for chunk in relay]


@pytest.mark.asyncio
async def test_response_write_failure_is_treated_as_disconnect():
    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo", " ", "dunia"])
    relay = _stream(upstream, signal=signal)
    response = RelayStreamingResponse(relay)
    messages: list[dict] = []

    async def send(message: dict) -> None:
        if message["type"] == "http.response.body" and message.get("body"):
            if any(m.get("body") for m in messages if m["type"] == "http.response.body"):
                raise BrokenPipeError(errno.EPIPE, "Broken pipe")
        messages.append(message)

    await response.stream_response(send)

    starts = [m for m in messages if m["type"] == "http.response.start"]
    assert len(starts) == 1
    assert starts[0]["status"] == 200
    bodies = [m["body"] for m in messages if m["type"] == "http.response.body"]
    assert bodies == [b"Halo"]
    assert relay.state is StreamState.ABORTED_CLEAN
    assert signal.aborted is True
    assert upstream.closed is True


@pytest.mark.asyncio
async def test_consumer_task_cancelled_during_pending_read(captured_logs):
    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo", "never"], hang_after=1)
    relay = _stream(upstream, signal=signal)
    received: list[bytes] = []

    async def consume() -> None:
        async for chunk in relay:
            received.append(chunk)

    task = asyncio.ensure_future(consume())
    await asyncio.sleep(0.05)
    assert received == [b"Halo"]

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert task.cancelled()
    assert relay.state is StreamState.ABORTED_CLEAN
    assert signal.reason == "consumer_cancelled"
    assert upstream.requested == 1
    assert upstream.closed is True
    assert captured_logs.errors() == []


@pytest.mark.asyncio
async def test_http_disconnect_mid_generation_ends_response_cleanly(captured_logs):
    signal = AbortSignal()
    upstream = ScriptedUpstream(["Halo", "never"], hang_after=1)
    relay = _stream(upstream, signal=signal)
    response = RelayStreamingResponse(relay)
    messages: list[dict] = []
    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": "1.1",
        "method": "POST",
        "path": "/api/virtual-chef",
        "headers": [],
    }

    async def receive() -> dict:
        await asyncio.sleep(0.05)
        return {"type": "http.disconnect"}

    async def send(message: dict) -> None:
        messages.append(message)

    await asyncio.wait_for(response(scope, receive, send), timeout=2)

    starts = [m for m in messages if m["type"] == "http.response.start"]
    assert [m["status"] for m in starts] == [200]
    bodies = [m["body"] for m in messages if m["type"] == "http.response.body" and m.get("body")]
    assert bodies == [b"Halo"]
    assert relay.state is StreamState.ABORTED_CLEAN
    assert signal.aborted is True
    assert upstream.closed is True
    assert captured_logs.errors() == []


@pytest.mark.asyncio
async def test_disconnect_watcher_is_stopped_before_close_returns():
    watcher_stopped = False

    async def is_disconnected() -> bool:
        nonlocal watcher_stopped
        try:
            await asyncio.Event().wait()
        finally:
            watcher_stopped = True
        return False

    upstream = ScriptedUpstream(["Halo", " ", "dunia"])
    relay = RelayStream(
        upstream.run(),
        AbortSignal(),
        request_id="req-watch",
        is_disconnected=is_disconnected,
        disconnect_poll_interval=0.01,
    )

    assert await relay.__anext__() == b"Halo"
    await asyncio.sleep(0)
    await relay.aclose()

    assert watcher_stopped is True
    assert upstream.closed is True
