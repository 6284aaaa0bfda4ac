"""Tagged error taxonomy for the sync engine.

Failures are classified once, where they originate: provider clients convert
``httpx`` failures through :func:`from_httpx` / :func:`raise_for_status`, and
retry predicates only read the resulting tag.
"""

from __future__ import annotations

import email.utils
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Mapping

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
AUTH_STATUS_CODES = frozenset({401})


class ErrorKind(StrEnum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    AUTH_EXPIRED = "auth_expired"
    VALIDATION = "validation"
    CONFLICT_UNRESOLVED = "conflict_unresolved"
    UNKNOWN = "unknown"


_RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER_ERROR,
        ErrorKind.TIMEOUT,
        ErrorKind.AUTH_EXPIRED,
    }
)


class SyncError(Exception):
    """Base exception for sync engine errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, provider_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS


class NetworkError(SyncError):
    """Connectivity failure before a response was received."""

    kind = ErrorKind.NETWORK


class HttpError(SyncError):
    """Upstream answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status: int,
        *,
        headers: Mapping[str, str] | None = None,
        provider_id: str | None = None,
    ) -> None:
        super().__init__(message, provider_id=provider_id)
        self.status = status
        self.headers = {key.lower(): value for key, value in (headers or {}).items()}

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        if self.status == 408:
            return ErrorKind.TIMEOUT
        if self.status == 429:
            return ErrorKind.RATE_LIMIT
        if 500 <= self.status <= 599:
            return ErrorKind.SERVER_ERROR
        if self.status in AUTH_STATUS_CODES:
            return ErrorKind.AUTH_EXPIRED
        return ErrorKind.UNKNOWN

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUS_CODES or self.status in AUTH_STATUS_CODES


class RateLimitedError(HttpError):
    """HTTP 429, or a local limiter denial when ``status`` is left at 429."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        status: int = 429,
        *,
        headers: Mapping[str, str] | None = None,
        provider_id: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status, headers=headers, provider_id=provider_id)
        self.retry_after = (
            retry_after if retry_after is not None else _parse_retry_after(self.headers)
        )


class ServerError(HttpError):
    """5xx response from upstream."""


class SyncTimeoutError(SyncError, TimeoutError):
    kind = ErrorKind.TIMEOUT


class AuthError(SyncError):
    """Expired or invalid credential; callers cap retries and surface it for re-auth."""

    kind = ErrorKind.AUTH_EXPIRED

    def __init__(
        self, message: str, *, status: int | None = None, provider_id: str | None = None
    ) -> None:
        super().__init__(message, provider_id=provider_id)
        self.status = status


class FolderValidationError(SyncError):
    """Missing or deleted folder configuration; fatal for the current cycle only."""

    kind = ErrorKind.VALIDATION


class ConflictUnresolvedError(SyncError):
    kind = ErrorKind.CONFLICT_UNRESOLVED

    def __init__(self, conflict_id: str, *, provider_id: str | None = None) -> None:
        super().__init__(f"Conflict {conflict_id} awaits manual resolution", provider_id=provider_id)
        self.conflict_id = conflict_id


def _parse_retry_after(headers: Mapping[str, str]) -> float | None:
    raw = headers.get("retry-after")
    if not raw:
        return None
    raw = raw.strip()
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def error_for_status(
    status: int,
    message: str,
    *,
    headers: Mapping[str, str] | None = None,
    provider_id: str | None = None,
) -> SyncError:
    """Build the tagged error matching an HTTP status."""
    if status == 429:
        return RateLimitedError(message, headers=headers, provider_id=provider_id)
    if 500 <= status <= 599:
        return ServerError(message, status, headers=headers, provider_id=provider_id)
    if status in AUTH_STATUS_CODES:
        return AuthError(message, status=status, provider_id=provider_id)
    return HttpError(message, status, headers=headers, provider_id=provider_id)


def from_httpx(exc: httpx.HTTPError, *, provider_id: str | None = None) -> SyncError:
    """Convert an ``httpx`` failure into a tagged sync error."""
    if isinstance(exc, httpx.TimeoutException):
        return SyncTimeoutError(f"Request timeout: {exc}", provider_id=provider_id)
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return error_for_status(
            response.status_code,
            f"HTTP {response.status_code}: {response.reason_phrase}",
            headers=dict(response.headers),
            provider_id=provider_id,
        )
    if isinstance(exc, httpx.TransportError):
        return NetworkError(f"Network error: {exc}", provider_id=provider_id)
    return SyncError(str(exc), provider_id=provider_id)


def raise_for_status(response: httpx.Response, *, provider_id: str | None = None) -> httpx.Response:
    """Return ``response`` unchanged on success, else raise its tagged error."""
    if response.is_success:
        return response
    raise error_for_status(
        response.status_code,
        f"HTTP {response.status_code}: {response.reason_phrase}",
        headers=dict(response.headers),
        provider_id=provider_id,
    )


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the error kind for ``exc``, falling back to message heuristics."""
    if isinstance(exc, SyncError):
        return exc.kind
    if isinstance(exc, httpx.HTTPError):
        return from_httpx(exc).kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorKind.NETWORK

    message = str(exc).lower()
    if "timeout" in message:
        return ErrorKind.TIMEOUT
    if "network" in message:
        return ErrorKind.NETWORK
    if "unauthorized" in message or "token expired" in message:
        return ErrorKind.AUTH_EXPIRED
    return ErrorKind.UNKNOWN


def is_retryable_error(exc: BaseException) -> bool:
    """Default retry classifier."""
    if isinstance(exc, SyncError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPError):
        return from_httpx(exc).retryable
    return classify_error(exc) in _RETRYABLE_KINDS


__all__ = [
    "AUTH_STATUS_CODES",
    "RETRYABLE_STATUS_CODES",
    "AuthError",
    "ConflictUnresolvedError",
    "ErrorKind",
    "FolderValidationError",
    "HttpError",
    "NetworkError",
    "RateLimitedError",
    "ServerError",
    "SyncError",
    "SyncTimeoutError",
    "classify_error",
    "error_for_status",
    "from_httpx",
    "is_retryable_error",
    "raise_for_status",
]
