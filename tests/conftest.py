"""Pytest configuration and shared fixtures.

This module provides fake clocks and factories shared by the sync engine tests.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from bookmark_sync.adapters.memory import (
    InMemoryBookmarkStore,
    InMemoryCheckpointStore,
    InMemorySettingsStore,
    RecordingNotificationSink,
    StaticProviderGateway,
)
from bookmark_sync.sync.conflicts import ConflictResolver
from bookmark_sync.sync.models import NotificationSettings, RemoteItem
from bookmark_sync.sync.orchestrator import SyncContext
from bookmark_sync.sync.rate_limiter import RateLimitConfig, RateLimiter
from bookmark_sync.sync.retry import RetryExecutor, RetryPolicy

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleeper:
    """Records requested delays and advances ``clock`` instead of sleeping."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


def at(minutes: int = 0) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def make_item(
    item_id: str,
    title: str | None = None,
    *,
    provider_id: str = "github",
    url: str | None = None,
    **fields: Any,
) -> RemoteItem:
    return RemoteItem(
        id=item_id,
        provider_id=provider_id,
        title=title if title is not None else f"Item {item_id}",
        url=url or f"https://example.com/{item_id}",
        **fields,
    )


def make_context(
    *,
    providers: StaticProviderGateway | None = None,
    bookmarks: InMemoryBookmarkStore | None = None,
    settings: InMemorySettingsStore | None = None,
    checkpoints: InMemoryCheckpointStore | None = None,
    notifier: RecordingNotificationSink | None = None,
    conflicts: ConflictResolver | None = None,
    rate_limit: RateLimitConfig | None = None,
    retry_policy: RetryPolicy | None = None,
    sleeper: FakeSleeper | None = None,
    clock: FakeClock | None = None,
    conflict_detection: bool = True,
) -> SyncContext:
    """Sync context over in-memory collaborators with time fully faked."""
    clock = clock or FakeClock()
    sleeper = sleeper or FakeSleeper(clock)
    policy = retry_policy or RetryPolicy(max_retries=2, initial_delay=0.5, use_jitter=False)
    return SyncContext(
        providers=providers or StaticProviderGateway(),
        bookmarks=bookmarks or InMemoryBookmarkStore(),
        settings=settings or InMemorySettingsStore(NotificationSettings(notify_on_success=True)),
        checkpoints=checkpoints or InMemoryCheckpointStore(),
        notifier=notifier or RecordingNotificationSink(),
        rate_limiter=RateLimiter(
            rate_limit or RateLimitConfig(max_requests=100, window_seconds=60.0),
            clock=clock,
            sleeper=sleeper,
        ),
        retry=RetryExecutor(policy, sleeper=sleeper, clock=clock),
        conflicts=conflicts or ConflictResolver(),
        retry_policy=policy,
        conflict_detection=conflict_detection,
        clock=lambda: BASE_TIME,
        timer=clock,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleeper(fake_clock: FakeClock) -> FakeSleeper:
    return FakeSleeper(fake_clock)
