"""Tests for the tagged error taxonomy and httpx classification."""

from __future__ import annotations

import httpx
import pytest

from bookmark_sync.sync.errors import (
    AuthError,
    ConflictUnresolvedError,
    ErrorKind,
    FolderValidationError,
    HttpError,
    NetworkError,
    RateLimitedError,
    ServerError,
    SyncError,
    SyncTimeoutError,
    classify_error,
    error_for_status,
    from_httpx,
    is_retryable_error,
    raise_for_status,
)

REQUEST = httpx.Request("GET", "https://api.example.com/items")


def _status_error(status: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    response = httpx.Response(status, headers=headers, request=REQUEST)
    return httpx.HTTPStatusError("failed", request=REQUEST, response=response)


@pytest.mark.parametrize(
    ("status", "expected_type", "kind", "retryable"),
    [
        (408, HttpError, ErrorKind.TIMEOUT, True),
        (429, RateLimitedError, ErrorKind.RATE_LIMIT, True),
        (500, ServerError, ErrorKind.SERVER_ERROR, True),
        (503, ServerError, ErrorKind.SERVER_ERROR, True),
        (501, ServerError, ErrorKind.SERVER_ERROR, False),
        (401, AuthError, ErrorKind.AUTH_EXPIRED, True),
        (403, HttpError, ErrorKind.UNKNOWN, False),
        (404, HttpError, ErrorKind.UNKNOWN, False),
    ],
)
def test_error_for_status(status, expected_type, kind, retryable) -> None:
    error = error_for_status(status, f"HTTP {status}", provider_id="github")

    assert type(error) is expected_type
    assert error.kind is kind
    assert is_retryable_error(error) is retryable
    assert error.provider_id == "github"


def test_from_httpx_timeout() -> None:
    error = from_httpx(httpx.ReadTimeout("slow", request=REQUEST), provider_id="github")

    assert isinstance(error, SyncTimeoutError)
    assert isinstance(error, TimeoutError)
    assert error.kind is ErrorKind.TIMEOUT
    assert error.retryable


def test_from_httpx_transport_error() -> None:
    error = from_httpx(httpx.ConnectError("refused", request=REQUEST))

    assert isinstance(error, NetworkError)
    assert error.retryable


def test_from_httpx_status_error_keeps_headers() -> None:
    error = from_httpx(_status_error(429, {"Retry-After": "12"}))

    assert isinstance(error, RateLimitedError)
    assert error.status == 429
    assert error.retry_after == 12.0
    assert error.headers["retry-after"] == "12"


def test_retry_after_http_date_in_past_is_zero() -> None:
    error = RateLimitedError(headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})

    assert error.retry_after == 0.0


def test_retry_after_garbage_is_ignored() -> None:
    assert RateLimitedError(headers={"Retry-After": "later"}).retry_after is None
    assert RateLimitedError(retry_after=3.0).retry_after == 3.0


def test_raise_for_status_passes_success_through() -> None:
    response = httpx.Response(200, request=REQUEST)

    assert raise_for_status(response) is response


def test_raise_for_status_raises_tagged_error() -> None:
    response = httpx.Response(502, request=REQUEST)

    with pytest.raises(ServerError) as exc_info:
        raise_for_status(response, provider_id="gitlab")

    assert exc_info.value.status == 502
    assert exc_info.value.provider_id == "gitlab"
    assert "HTTP 502" in str(exc_info.value)


def test_non_retryable_tags() -> None:
    assert not FolderValidationError("no folder").retryable
    assert FolderValidationError("no folder").kind is ErrorKind.VALIDATION

    conflict_error = ConflictUnresolvedError("github-1")
    assert conflict_error.conflict_id == "github-1"
    assert conflict_error.kind is ErrorKind.CONFLICT_UNRESOLVED
    assert not conflict_error.retryable
    assert not SyncError("generic").retryable


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (TimeoutError(), ErrorKind.TIMEOUT),
        (ConnectionResetError(), ErrorKind.NETWORK),
        (RuntimeError("request timeout after 30s"), ErrorKind.TIMEOUT),
        (RuntimeError("network unreachable"), ErrorKind.NETWORK),
        (RuntimeError("401 Unauthorized"), ErrorKind.AUTH_EXPIRED),
        (RuntimeError("token expired"), ErrorKind.AUTH_EXPIRED),
        (ValueError("bad payload"), ErrorKind.UNKNOWN),
        (_status_error(504), ErrorKind.SERVER_ERROR),
    ],
)
def test_classify_error(exc, kind) -> None:
    assert classify_error(exc) is kind


def test_untagged_errors_use_message_heuristics_for_retry() -> None:
    assert is_retryable_error(RuntimeError("network down"))
    assert not is_retryable_error(ValueError("bad payload"))
    assert is_retryable_error(_status_error(503))
    assert not is_retryable_error(_status_error(400))
