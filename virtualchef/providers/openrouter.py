"""
OpenRouter chat-completions client: shared httpx pool, SSE decoding and
delta-text extraction.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator, AsyncIterator

import httpx

from virtualchef.config.settings import settings
from virtualchef.core.errors import ProviderError
from virtualchef.core.models import GenerationRequest
from virtualchef.util.logger import logger

_DONE_MARKER = "[DONE]"
_ERROR_DETAIL_MAX_CHARS = 600

_provider_async_client: httpx.AsyncClient | None = None
_provider_client_lock: asyncio.Lock | None = None


def _provider_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _provider_http_timeout() -> httpx.Timeout:
    timeout = float(settings.upstream_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_provider_async_client() -> httpx.AsyncClient:
    global _provider_async_client, _provider_client_lock
    if _provider_async_client is not None:
        return _provider_async_client
    if _provider_client_lock is None:
        _provider_client_lock = asyncio.Lock()
    async with _provider_client_lock:
        if _provider_async_client is None:
            _provider_async_client = httpx.AsyncClient(
                timeout=_provider_http_timeout(),
                limits=_provider_http_limits(),
            )
    return _provider_async_client


async def close_provider_async_client() -> None:
    global _provider_async_client
    if _provider_async_client is not None:
        await _provider_async_client.aclose()
        _provider_async_client = None


def _flatten_delta_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "".join(_flatten_delta_content(item) for item in value)
    if isinstance(value, dict):
        if isinstance(value.get("text"), str):
            return value["text"]
        if "content" in value:
            return _flatten_delta_content(value["content"])
    return ""


def _extract_sse_data_payload(line: str) -> str | None:
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    return stripped[5:].strip()


def _safe_error_detail(raw: Any) -> str:
    if isinstance(raw, dict):
        error = raw.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"][:_ERROR_DETAIL_MAX_CHARS]
        if isinstance(error, str):
            return error[:_ERROR_DETAIL_MAX_CHARS]
        return json.dumps(raw, ensure_ascii=False)[:_ERROR_DETAIL_MAX_CHARS]
    return str(raw or "")[:_ERROR_DETAIL_MAX_CHARS]


def _decode_json_or_text(body: bytes) -> dict[str, Any] | str:
    text = body.decode("utf-8", errors="replace")
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    return parsed if isinstance(parsed, dict) else text


def _extract_event_text(data_payload: str) -> str:
    """Return the delta text of one chat.completion.chunk event.

    Raises ProviderError when the provider reports an error inside the stream
    (OpenRouter does this after a 200 when a routed model fails).
    """
    try:
        event = json.loads(data_payload)
    except json.JSONDecodeError:
        logger.debug("skip undecodable provider event bytes=%d", len(data_payload))
        return ""
    if not isinstance(event, dict):
        return ""

    if event.get("error"):
        raise ProviderError(_safe_error_detail(event))

    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if isinstance(delta, dict):
        return _flatten_delta_content(delta.get("content"))
    return ""


async def _next_line(lines: AsyncIterator[str]) -> str | None:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


class OpenRouterProvider:
    """Streams chat completions from an OpenAI-compatible OpenRouter endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: str,
        referer: str = "",
        title: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._referer = referer
        self._title = title
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": request.system_prompt}]
        messages.extend(message.to_provider_dict() for message in request.messages)
        return {
            "model": self.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_output_tokens,
            "stream": True,
        }

    async def stream_text(self, request: GenerationRequest) -> AsyncGenerator[str, None]:
        signal = request.cancellation_signal
        url = f"{self.base_url}/chat/completions"
        body = json.dumps(self._build_payload(request), ensure_ascii=False).encode("utf-8")
        client = self._client or await _get_provider_async_client()
        logger.debug("provider stream start url=%s model=%s payload_bytes=%d", url, self.model, len(body))

        async with client.stream("POST", url, content=body, headers=self._headers()) as resp:
            logger.debug("provider stream connected url=%s status=%s", url, resp.status_code)
            if resp.status_code >= 400:
                detail = _safe_error_detail(_decode_json_or_text(await resp.aread()))
                raise ProviderError(f"provider_http_error:{resp.status_code}:{detail}", status_code=resp.status_code)

            lines = resp.aiter_lines()
            try:
                while not signal.aborted:
                    finished, line = await signal.race(_next_line(lines))
                    if not finished:
                        break
                    if line is None:
                        return
                    payload_text = _extract_sse_data_payload(line)
                    if payload_text is None:
                        continue
                    if payload_text == _DONE_MARKER:
                        return
                    text = _extract_event_text(payload_text)
                    if text:
                        yield text
            finally:
                await lines.aclose()
            logger.info("provider stream stopped by abort signal reason=%s", signal.reason)
