from __future__ import annotations

from typing import Any, Optional


class UnicordError(Exception):
    """Base unicord error."""

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class ConfigError(UnicordError):
    """Bot configuration error."""


class GatewayError(UnicordError):
    """Malformed gateway frame or protocol violation."""


class TransportError(UnicordError):
    """Socket or HTTP transport failure."""


class APIError(UnicordError):
    """Discord API request error."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        user_message: Optional[str] = None,
    ) -> None:
        if user_message is None:
            user_message = "Discord API error."
        super().__init__(message, user_message=user_message)
        self.status_code = status_code
        self.retry_after = retry_after


class RequestError(APIError):
    """Non-retryable API error (any non-success status besides 429/5xx)."""


class RateLimitedError(APIError):
    """429 response; retried, surfaced once retries are exhausted."""


class ServerError(APIError):
    """5xx response; retried, surfaced once retries are exhausted."""


class HandlerError(UnicordError):
    """Exception raised inside a middleware or handler, caught at dispatch."""

    def __init__(self, original: BaseException, context: Any = None) -> None:
        super().__init__(f"{type(original).__name__}: {original}")
        self.original = original
        self.context = context
