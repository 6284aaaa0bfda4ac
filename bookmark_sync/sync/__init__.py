"""Reconciliation engine: diffing, conflicts, retries, rate limits and the sync loop."""

from __future__ import annotations

from bookmark_sync.sync.conflicts import ConflictResolver
from bookmark_sync.sync.diff import compute_diff
from bookmark_sync.sync.orchestrator import AppliedChanges, SyncContext, SyncOrchestrator
from bookmark_sync.sync.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    RateLimitStatus,
    RateLimitStrategy,
)
from bookmark_sync.sync.retry import (
    RetryableErrorType,
    RetryExecutor,
    RetryPolicy,
    RetryResult,
    RetryStrategy,
    with_retry,
)

__all__ = [
    "AppliedChanges",
    "ConflictResolver",
    "RateLimitConfig",
    "RateLimitStatus",
    "RateLimitStrategy",
    "RateLimiter",
    "RetryExecutor",
    "RetryPolicy",
    "RetryResult",
    "RetryStrategy",
    "RetryableErrorType",
    "SyncContext",
    "SyncOrchestrator",
    "compute_diff",
    "with_retry",
]
