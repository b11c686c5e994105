"""Streaming response that owns the outbound side of a RelayStream."""

from __future__ import annotations

import anyio
from starlette.responses import StreamingResponse
from starlette.types import Send

from virtualchef.relay.stream import RelayStream

TEXT_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"


class RelayStreamingResponse(StreamingResponse):
    """Commits 200 before the first chunk exists; write failures are routed back to the stream."""

    def __init__(self, relay_stream: RelayStream, status_code: int = 200) -> None:
        super().__init__(
            relay_stream,
            status_code=status_code,
            media_type=TEXT_STREAM_MEDIA_TYPE,
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )
        self.relay_stream = relay_stream

    async def stream_response(self, send: Send) -> None:
        try:
            await super().stream_response(send)
        except OSError as exc:
            if not self.relay_stream.fail_write(exc):
                raise
        finally:
            # Runs under a cancelled scope when the client disconnects; shield so the provider call is released.
            with anyio.CancelScope(shield=True):
                await self.relay_stream.aclose()
