"""Tests for JSON logging helpers."""

from __future__ import annotations

import json
import logging
import sys

from bookmark_sync.core.logging_utils import (
    EnhancedJsonFormatter,
    generate_correlation_id,
    truncate_log_content,
)


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="bookmark_sync.sync.orchestrator",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_groups_counts_and_timings() -> None:
    formatter = EnhancedJsonFormatter(include_location=False, include_process_info=False)
    record = _record(
        "sync_provider_completed",
        correlation_id="abc123",
        provider_id="github",
        items_added=2,
        duration_seconds=0.5,
        strategy="token_bucket",
    )

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "sync_provider_completed"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "abc123"
    assert payload["provider_id"] == "github"
    assert payload["counts"] == {"items_added": 2}
    assert payload["timing"] == {"duration_seconds": 0.5}
    assert payload["extra"] == {"strategy": "token_bucket"}
    assert "module" not in payload


def test_formatter_includes_exception() -> None:
    formatter = EnhancedJsonFormatter()
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record("sync_provider_failed")
        record.exc_info = sys.exc_info()

    payload = json.loads(formatter.format(record))

    assert payload["exception"]["type"] == "ValueError"
    assert payload["exception"]["message"] == "boom"
    assert payload["line"] == 10


def test_correlation_ids_are_short_and_unique() -> None:
    ids = {generate_correlation_id() for _ in range(100)}

    assert len(ids) == 100
    assert all(len(cid) == 12 for cid in ids)


def test_truncate_log_content() -> None:
    assert truncate_log_content(None) is None
    assert truncate_log_content("short") == "short"

    truncated = truncate_log_content("word " * 400, max_length=100)
    assert truncated is not None
    assert truncated.endswith("... [truncated]")
    assert len(truncated) <= 100

    assert truncate_log_content("abcdefghij" * 3, max_length=10) == "abcdefghij..."
