"""Tell an expected client disconnect apart from a real stream failure."""

from __future__ import annotations

import asyncio
import errno

import httpx

from virtualchef.core.cancellation import AbortSignal

_DISCONNECT_ERRNOS = frozenset({errno.ECONNRESET, errno.EPIPE, errno.ECONNREFUSED})
_DISCONNECT_TYPES = (
    ConnectionResetError,
    BrokenPipeError,
    ConnectionRefusedError,
    ConnectionAbortedError,
    asyncio.CancelledError,
)
# Best-effort fallback; no client library guarantees this wording for a peer hang-up.
_DISCONNECT_MESSAGE_HINTS = ("terminated",)
_MAX_CAUSE_DEPTH = 8


def _error_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain and len(chain) < _MAX_CAUSE_DEPTH:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _is_structural_disconnect(exc: BaseException) -> bool:
    if isinstance(exc, _DISCONNECT_TYPES):
        return True
    if isinstance(exc, OSError) and exc.errno in _DISCONNECT_ERRNOS:
        return True
    return False


def is_client_disconnect(exc: BaseException, signal: AbortSignal | None = None) -> bool:
    """Return True when ``exc`` means the exchange ended because someone hung up."""
    if signal is not None and signal.aborted:
        return True
    chain = _error_chain(exc)
    if any(_is_structural_disconnect(item) for item in chain):
        return True
    for item in chain:
        if isinstance(item, httpx.TransportError):
            message = str(item).lower()
            if any(hint in message for hint in _DISCONNECT_MESSAGE_HINTS):
                return True
    return False
