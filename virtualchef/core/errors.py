"""Project error hierarchy."""

from __future__ import annotations


class VirtualChefError(Exception):
    """Base error."""


class ConfigurationError(VirtualChefError):
    """Raised when the provider credential is not configured."""


class ChatValidationError(VirtualChefError):
    """Raised when an inbound chat body is malformed; message is safe to return to the client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProviderError(VirtualChefError):
    """Raised when the model provider rejects a call or reports an error in-stream."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class UpstreamStreamError(VirtualChefError):
    """Raised into the outbound stream when forwarding fails after the response started."""


class RequestTooLargeError(VirtualChefError):
    """Raised while reading a request body that grows past the configured limit."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit
