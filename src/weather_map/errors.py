"""Typed failures surfaced by the provider client and the services."""

from __future__ import annotations

import enum


class ApiErrorKind(enum.Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_MESSAGES = {
    ApiErrorKind.INVALID_CREDENTIALS: "Invalid API key. Please check your OpenWeatherMap key.",
    ApiErrorKind.RATE_LIMITED: "Request limit reached. Please try again later.",
    ApiErrorKind.TIMEOUT: "The request took too long. Please check your connection.",
    ApiErrorKind.UNKNOWN: "Could not retrieve data from the weather provider. Please try again.",
}


class ApiError(Exception):
    """Raised when a provider request fails in a way the caller must see.

    ``str(error)`` is a user-facing message; ``kind`` drives fallback decisions.
    """

    def __init__(self, kind: ApiErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or _MESSAGES[kind]
        super().__init__(self.message)

    @property
    def is_rate_limited(self) -> bool:
        return self.kind is ApiErrorKind.RATE_LIMITED
