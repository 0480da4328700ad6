"""Error taxonomy shared by the translators, the queue worker and the clients."""
from __future__ import annotations
from typing import Optional


class HubError(Exception):
    pass


class Cancelled(HubError):
    """The operation was aborted by its cancel token. Not a failure."""


class TranslationError(HubError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class NetworkError(TranslationError):
    """No response was received."""


class RateLimited(TranslationError):
    def __init__(self, message: str = "Rate limit exceeded", status: Optional[int] = 429) -> None:
        super().__init__(message, status)


class RequestTimeout(TranslationError):
    def __init__(self, message: str = "Request timeout", status: Optional[int] = 504) -> None:
        super().__init__(message, status)


class ServerError(TranslationError):
    """Non-2xx response other than 429."""


class ParseError(TranslationError):
    """Malformed response body. Translators degrade to a partial map instead of raising."""


class SearchError(HubError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ChatError(HubError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


def error_for_status(status: int, body: str = "") -> TranslationError:
    if status == 429:
        return RateLimited(f"HTTP 429: {body[:200]}")
    if status == 504:
        return RequestTimeout(f"HTTP 504: {body[:200]}")
    return ServerError(f"HTTP {status}: {body[:200]}", status)
