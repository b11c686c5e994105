"""Model provider contract."""

from __future__ import annotations

from typing import AsyncIterator, Protocol

from virtualchef.core.models import GenerationRequest


class ModelProvider(Protocol):
    """Produces a lazy, finite, non-restartable stream of text chunks.

    The stream may fail mid-way and must stop pulling from upstream once
    ``request.cancellation_signal`` is aborted. Closing the returned iterator
    releases the upstream connection.
    """

    def stream_text(self, request: GenerationRequest) -> AsyncIterator[str]:
        ...
