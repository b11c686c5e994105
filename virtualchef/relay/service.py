"""Chat relay: validate, invoke the provider, stream its output back."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.requests import ClientDisconnect

from virtualchef.config.settings import Settings
from virtualchef.core.cancellation import AbortSignal
from virtualchef.core.errors import ChatValidationError, ConfigurationError
from virtualchef.core.models import GenerationRequest, RelayOutcome
from virtualchef.observability.metrics import emit_counter
from virtualchef.providers.base import ModelProvider
from virtualchef.providers.openrouter import OpenRouterProvider
from virtualchef.relay.messages import parse_chat_body, to_conversation_messages
from virtualchef.relay.prompts import SYSTEM_PROMPT
from virtualchef.relay.response import RelayStreamingResponse
from virtualchef.relay.stream import RelayStream, StreamState
from virtualchef.util.logger import RequestLogger, get_logger, request_logger

logger = get_logger("relay")

NOT_CONFIGURED_MESSAGE = "Layanan Virtual Chef belum dikonfigurasi (OPEN_ROUTER_API_KEY)"
UNEXPECTED_ERROR_MESSAGE = "Terjadi kesalahan saat memproses permintaan Anda"
CLIENT_CLOSED_REQUEST_STATUS = 499

_STATE_OUTCOMES = {
    StreamState.COMPLETED: RelayOutcome.STREAMED_OK,
    StreamState.ABORTED_CLEAN: RelayOutcome.CLIENT_ABORTED,
    StreamState.ERRORED_MID_STREAM: RelayOutcome.UPSTREAM_ERROR,
}


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@dataclass(frozen=True, slots=True)
class RelayConfig:
    api_key: str
    model: str
    base_url: str
    temperature: float
    max_output_tokens: int
    system_prompt: str = SYSTEM_PROMPT
    referer: str = ""
    title: str = ""
    disconnect_poll_interval_seconds: float = 0.5

    @classmethod
    def from_settings(cls, cfg: Settings) -> "RelayConfig":
        return cls(
            api_key=cfg.open_router_api_key,
            model=cfg.open_router_model,
            base_url=cfg.open_router_base_url,
            temperature=cfg.chat_temperature,
            max_output_tokens=cfg.chat_max_output_tokens,
            referer=cfg.open_router_referer,
            title=cfg.open_router_title,
            disconnect_poll_interval_seconds=cfg.disconnect_poll_interval_seconds,
        )

    def require_credential(self) -> str:
        key = (self.api_key or "").strip()
        if not key:
            raise ConfigurationError("open_router_api_key is not configured")
        return key


def _default_provider_factory(config: RelayConfig) -> ModelProvider:
    return OpenRouterProvider(
        config.require_credential(),
        model=config.model,
        base_url=config.base_url,
        referer=config.referer,
        title=config.title,
    )


def _record_outcome(log: RequestLogger, outcome: RelayOutcome, status_code: int | None = None) -> None:
    emit_counter("relay_outcome", labels={"outcome": outcome.value})
    log.info("relay finished status=%s", status_code or "streamed", extra={"outcome": outcome.value})


class ChatRelay:
    def __init__(
        self,
        config: RelayConfig,
        provider_factory: Callable[[RelayConfig], ModelProvider] = _default_provider_factory,
    ) -> None:
        self.config = config
        self._provider_factory = provider_factory

    async def handle(self, request: Request) -> Response:
        request_id = uuid.uuid4().hex[:16]
        signal = AbortSignal()
        log = request_logger(logger, request_id)

        # Validating
        try:
            self.config.require_credential()
        except ConfigurationError:
            log.error("virtual chef provider not configured")
            _record_outcome(log, RelayOutcome.UPSTREAM_UNAVAILABLE, 503)
            return error_response(503, NOT_CONFIGURED_MESSAGE)

        try:
            raw_messages = parse_chat_body(await request.body())
            messages = to_conversation_messages(raw_messages)
        except ClientDisconnect:
            log.info("client aborted before request body was read")
            _record_outcome(log, RelayOutcome.CLIENT_ABORTED, CLIENT_CLOSED_REQUEST_STATUS)
            return Response(status_code=CLIENT_CLOSED_REQUEST_STATUS)
        except ChatValidationError as exc:
            log.warning("chat request rejected reason=%s", exc.message)
            _record_outcome(log, RelayOutcome.BAD_INPUT, 400)
            return error_response(400, exc.message)

        # AwaitingUpstream
        try:
            generation = GenerationRequest(
                system_prompt=self.config.system_prompt,
                messages=messages,
                temperature=self.config.temperature,
                max_output_tokens=self.config.max_output_tokens,
                cancellation_signal=signal,
            )
            provider = self._provider_factory(self.config)
            chunks = provider.stream_text(generation)
        except Exception:
            if signal.aborted or await request.is_disconnected():
                _record_outcome(log, RelayOutcome.CLIENT_ABORTED, CLIENT_CLOSED_REQUEST_STATUS)
                return Response(status_code=CLIENT_CLOSED_REQUEST_STATUS)
            log.exception("virtual chef request failed before streaming")
            _record_outcome(log, RelayOutcome.UPSTREAM_ERROR, 500)
            return error_response(500, UNEXPECTED_ERROR_MESSAGE)

        log.info("chat stream start messages=%d", len(messages))
        relay_stream = RelayStream(
            chunks,
            signal,
            request_id=request_id,
            is_disconnected=request.is_disconnected,
            disconnect_poll_interval=self.config.disconnect_poll_interval_seconds,
            on_finish=lambda state: _record_outcome(log, _STATE_OUTCOMES[state]),
        )
        # Streaming: from here on only the byte stream can report trouble.
        return RelayStreamingResponse(relay_stream)
