"""Per-request abort signal and client disconnect watcher."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import anyio

from virtualchef.util.logger import logger


class AbortSignal:
    """Cooperative, one-shot cancellation handle shared by the relay and the provider call."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "aborted") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[Any]) -> tuple[bool, Any]:
        """Await ``awaitable`` unless the signal fires first.

        Returns ``(True, result)`` when the awaitable finished, ``(False, None)``
        when the signal won. A losing awaitable is cancelled and waited for, so
        the generator it was driving is idle again when this returns or raises.
        """
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            return False, None
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await cancel_and_wait(work)
            raise
        finally:
            waiter.cancel()
        if work.done():
            return True, work.result()
        await cancel_and_wait(work)
        return False, None


async def cancel_and_wait(task: asyncio.Future) -> None:
    """Cancel ``task`` and wait until it has actually stopped.

    The wait is shielded from an enclosing cancel scope; the task's own
    cancellation or failure is consumed here.
    """
    task.cancel()
    with anyio.CancelScope(shield=True):
        await asyncio.wait({task})
    if not task.cancelled():
        task.exception()


async def watch_disconnect(
    is_disconnected: Callable[[], Awaitable[bool]],
    signal: AbortSignal,
    interval_seconds: float,
) -> None:
    """Abort ``signal`` once ``is_disconnected`` reports the client is gone."""
    while not signal.aborted:
        if await is_disconnected():
            logger.debug("client disconnect detected, aborting request")
            signal.abort("client_disconnected")
            return
        try:
            await asyncio.wait_for(signal.wait(), timeout=max(0.01, interval_seconds))
        except asyncio.TimeoutError:
            continue
