"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI

from virtualchef.config.settings import settings
from virtualchef.core.errors import RequestTooLargeError
from virtualchef.observability import metrics
from virtualchef.providers.openrouter import close_provider_async_client
from virtualchef.relay.router import router as relay_router
from virtualchef.relay.service import UNEXPECTED_ERROR_MESSAGE, error_response
from virtualchef.util.logger import logger

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
REQUEST_TOO_LARGE_MESSAGE = "Request body is too large"


def _header(scope, name: bytes) -> str:
    for key, value in scope.get("headers") or []:
        if key.lower() == name:
            return value.decode("latin-1")
    return ""


class RequestBoundaryMiddleware:
    """
    Rejects oversize bodies and turns unhandled exceptions into the JSON error
    shape, but only while the response has not started yet. Content-Length is
    checked up front; bodies without one (chunked uploads) are counted as they
    are read. Plain ASGI so streamed bodies pass through unbuffered.
    """

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        path = str(scope.get("path") or "/")
        method = str(scope.get("method") or "GET").upper()
        logger.debug("boundary enter method=%s path=%s", method, path)

        content_length_header = _header(scope, b"content-length").strip()
        if settings.max_request_body_bytes > 0 and method in _BODY_METHODS and content_length_header:
            try:
                content_length = int(content_length_header)
            except ValueError:
                logger.warning("boundary reject invalid content-length path=%s", path)
                await error_response(400, "Invalid Content-Length header")(scope, receive, send)
                return
            if content_length > settings.max_request_body_bytes:
                logger.warning(
                    "boundary reject oversize request content_length=%s max=%s path=%s",
                    content_length,
                    settings.max_request_body_bytes,
                    path,
                )
                await error_response(413, REQUEST_TOO_LARGE_MESSAGE)(scope, receive, send)
                return

        limit = settings.max_request_body_bytes if method in _BODY_METHODS else 0
        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if limit > 0 and message.get("type") == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    raise RequestTooLargeError(limit)
            return message

        response_started = False

        async def tracking_send(message) -> None:
            nonlocal response_started
            if message.get("type") == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except RequestTooLargeError:
            if response_started:
                raise
            logger.warning("boundary reject oversize streamed body received=%s max=%s path=%s", received, limit, path)
            await error_response(413, REQUEST_TOO_LARGE_MESSAGE)(scope, receive, send)
        except Exception:
            if response_started:
                # status already committed; let the server drop the connection
                raise
            logger.exception("gateway unhandled exception path=%s", path)
            await error_response(500, UNEXPECTED_ERROR_MESSAGE)(scope, receive, send)


app = FastAPI(title=settings.app_name)
app.include_router(relay_router, prefix="/api")


@app.get("/health")
def health() -> dict:
    logger.info("health check")
    return {"status": "ok", "provider_configured": bool(settings.open_router_api_key.strip())}


@app.get("/metrics")
def metrics_snapshot() -> dict:
    return metrics.snapshot()


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_provider_async_client()


app.add_middleware(RequestBoundaryMiddleware)
