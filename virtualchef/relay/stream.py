"""
Outbound stream adapter: passes provider chunks through untouched and decides
how the byte stream ends when something goes wrong.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable

import anyio

from virtualchef.core.cancellation import AbortSignal, cancel_and_wait, watch_disconnect
from virtualchef.core.errors import UpstreamStreamError
from virtualchef.relay.classify import is_client_disconnect
from virtualchef.util.logger import get_logger, request_logger

logger = get_logger("relay.stream")


class StreamState(str, Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED_CLEAN = "aborted_clean"
    ERRORED_MID_STREAM = "errored_mid_stream"


async def _next_chunk(chunks: AsyncIterator[str]) -> str | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


class RelayStream:
    """Single-use async iterator of UTF-8 encoded chunks.

    Terminal states:

    * ``COMPLETED``: provider signalled end of stream, iterator ends normally.
    * ``ABORTED_CLEAN``: abort signal fired, consumer cancelled, or the failure
      was a reset / broken pipe; iterator ends normally and nothing is logged
      as an error.
    * ``ERRORED_MID_STREAM``: any other failure; logged, and the iterator raises
      ``UpstreamStreamError`` so the server drops the connection instead of
      sending a clean end-of-body.

    Headers and status are never touched here; by the time this runs they may
    already be on the wire.
    """

    def __init__(
        self,
        chunks: AsyncIterator[str],
        signal: AbortSignal,
        *,
        request_id: str,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        disconnect_poll_interval: float = 0.5,
        on_finish: Callable[[StreamState], None] | None = None,
    ) -> None:
        self._chunks = chunks
        self._signal = signal
        self._log = request_logger(logger, request_id)
        self._is_disconnected = is_disconnected
        self._disconnect_poll_interval = disconnect_poll_interval
        self._on_finish = on_finish
        self._state = StreamState.STREAMING
        self._forwarded = 0
        self._pump_gen = self._pump()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def forwarded_chunks(self) -> int:
        return self._forwarded

    def __aiter__(self) -> "RelayStream":
        return self

    async def __anext__(self) -> bytes:
        return await self._pump_gen.__anext__()

    async def aclose(self) -> None:
        await self._pump_gen.aclose()

    def _finish(self, state: StreamState) -> None:
        if self._state is not StreamState.STREAMING:
            return
        self._state = state
        if self._on_finish is not None:
            self._on_finish(state)

    def fail_write(self, exc: BaseException) -> bool:
        """Record a failed write to the client; returns True when it was a plain disconnect."""
        self._signal.abort("client_write_failed")
        if is_client_disconnect(exc):
            self._finish(StreamState.ABORTED_CLEAN)
            self._log.info(
                "client went away during write forwarded=%d",
                self._forwarded,
                extra={"outcome": self._state.value},
            )
            return True
        self._finish(StreamState.ERRORED_MID_STREAM)
        self._log.error(
            "chat stream write failure forwarded=%d error=%r",
            self._forwarded,
            exc,
            extra={"outcome": self._state.value},
        )
        return False

    async def _close_upstream(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    async def _pump(self):
        watcher: asyncio.Task | None = None
        if self._is_disconnected is not None:
            watcher = asyncio.ensure_future(
                watch_disconnect(self._is_disconnected, self._signal, self._disconnect_poll_interval)
            )
        try:
            while True:
                finished, chunk = await self._signal.race(_next_chunk(self._chunks))
                if not finished:
                    self._finish(StreamState.ABORTED_CLEAN)
                    self._log.info(
                        "chat stream aborted reason=%s forwarded=%d",
                        self._signal.reason,
                        self._forwarded,
                        extra={"outcome": self._state.value},
                    )
                    return
                if chunk is None:
                    self._finish(StreamState.COMPLETED)
                    return
                self._forwarded += 1
                yield chunk.encode("utf-8")
        except (asyncio.CancelledError, GeneratorExit):
            self._signal.abort("consumer_cancelled")
            self._finish(StreamState.ABORTED_CLEAN)
            raise
        except Exception as exc:
            if is_client_disconnect(exc, self._signal):
                self._finish(StreamState.ABORTED_CLEAN)
                self._log.info(
                    "chat stream closed after disconnect forwarded=%d error=%r",
                    self._forwarded,
                    exc,
                    extra={"outcome": self._state.value},
                )
                return
            self._finish(StreamState.ERRORED_MID_STREAM)
            self._signal.abort("upstream_failed")
            self._log.error(
                "chat stream upstream failure forwarded=%d error=%r",
                self._forwarded,
                exc,
                extra={"outcome": self._state.value},
            )
            raise UpstreamStreamError(f"upstream stream failed after {self._forwarded} chunk(s)") from exc
        finally:
            # Cleanup may run inside a cancelled scope (client disconnect); it must still finish.
            with anyio.CancelScope(shield=True):
                if watcher is not None:
                    await cancel_and_wait(watcher)
                await self._close_upstream()
