"""Per-source rate limiting with token bucket, sliding window and fixed window algorithms."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

from bookmark_sync.core.time_utils import monotonic
from bookmark_sync.core.timers import DelayScheduler

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from bookmark_sync.config.sync import RateLimitDefaultsConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

_REMAINING_HEADERS = ("x-ratelimit-remaining", "x-rate-limit-remaining", "ratelimit-remaining")
_LIMIT_HEADERS = ("x-ratelimit-limit", "x-rate-limit-limit", "ratelimit-limit")
_RESET_HEADERS = ("x-ratelimit-reset", "x-rate-limit-reset", "ratelimit-reset")


class RateLimitStrategy(StrEnum):
    TOKEN_BUCKET = "token_bucket"
    SLIDING_WINDOW = "sliding_window"
    FIXED_WINDOW = "fixed_window"


@dataclass
class RateLimitConfig:
    """Configuration for one source's rate limit."""

    max_requests: int = 60  # Requests allowed per window
    window_seconds: float = 60.0
    strategy: RateLimitStrategy = RateLimitStrategy.TOKEN_BUCKET

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            msg = "max_requests must be at least 1"
            raise ValueError(msg)
        if self.window_seconds <= 0:
            msg = "window_seconds must be positive"
            raise ValueError(msg)
        self.strategy = RateLimitStrategy(self.strategy)

    @classmethod
    def from_config(cls, config: RateLimitDefaultsConfig) -> RateLimitConfig:
        return cls(
            max_requests=config.max_requests,
            window_seconds=config.window_seconds,
            strategy=RateLimitStrategy(config.strategy),
        )

    @property
    def refill_rate(self) -> float:
        """Tokens regained per second."""
        return self.max_requests / self.window_seconds


@dataclass(frozen=True)
class RateLimitStatus:
    provider_id: str
    remaining: int
    limit: int
    reset_in: float
    is_limited: bool


@dataclass
class _TokenBucket:
    tokens: float
    last_refill: float


@dataclass
class _FixedWindow:
    count: int
    window_start: float


def _get_header(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in names:
        value = lowered.get(name)
        if value:
            return value
    return None


class RateLimiter:
    """Thread-safe per-source rate limiter.

    ``check_limit`` and ``get_status`` are synchronous and never suspend;
    ``wait_for_slot`` and ``execute`` sleep through the delay scheduler.
    Sources that were never configured use ``default_config``.
    """

    def __init__(
        self,
        default_config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._default_config = default_config or RateLimitConfig()
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleeper or DelayScheduler().sleep
        self._configs: dict[str, RateLimitConfig] = {}
        self._buckets: dict[str, _TokenBucket] = {}
        self._request_logs: dict[str, deque[float]] = {}
        self._fixed_windows: dict[str, _FixedWindow] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def default_config(self) -> RateLimitConfig:
        return self._default_config

    def configure(self, provider_id: str, config: RateLimitConfig) -> None:
        with self._lock:
            self._configs[provider_id] = config
            self._drop_state(provider_id)
            if config.strategy is RateLimitStrategy.TOKEN_BUCKET:
                self._buckets[provider_id] = _TokenBucket(
                    tokens=float(config.max_requests), last_refill=self._clock()
                )
        logger.info(
            "rate_limit_configured",
            extra={
                "provider_id": provider_id,
                "max_requests": config.max_requests,
                "window_seconds": config.window_seconds,
                "strategy": config.strategy.value,
            },
        )

    def get_config(self, provider_id: str) -> RateLimitConfig:
        with self._lock:
            return self._configs.get(provider_id, self._default_config)

    # ------------------------------------------------------------------
    # Checking
    # ------------------------------------------------------------------

    def check_limit(self, provider_id: str) -> bool:
        """Record one request for ``provider_id`` if the limit allows it."""
        with self._lock:
            config = self.get_config(provider_id)
            now = self._clock()
            if config.strategy is RateLimitStrategy.SLIDING_WINDOW:
                allowed = self._check_sliding_window(provider_id, config, now)
            elif config.strategy is RateLimitStrategy.FIXED_WINDOW:
                allowed = self._check_fixed_window(provider_id, config, now)
            else:
                allowed = self._check_token_bucket(provider_id, config, now)

        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                extra={"provider_id": provider_id, "strategy": config.strategy.value},
            )
        return allowed

    def _check_token_bucket(self, provider_id: str, config: RateLimitConfig, now: float) -> bool:
        bucket = self._buckets.get(provider_id)
        if bucket is None:
            bucket = _TokenBucket(tokens=float(config.max_requests), last_refill=now)
            self._buckets[provider_id] = bucket

        elapsed = max(0.0, now - bucket.last_refill)
        bucket.tokens = min(float(config.max_requests), bucket.tokens + elapsed * config.refill_rate)
        bucket.last_refill = now

        if bucket.tokens >= 1:
            bucket.tokens -= 1
            return True
        return False

    def _check_sliding_window(self, provider_id: str, config: RateLimitConfig, now: float) -> bool:
        log = self._request_logs.setdefault(provider_id, deque())
        cutoff = now - config.window_seconds
        while log and log[0] <= cutoff:
            log.popleft()

        if len(log) < config.max_requests:
            log.append(now)
            return True
        return False

    def _check_fixed_window(self, provider_id: str, config: RateLimitConfig, now: float) -> bool:
        window = self._fixed_windows.get(provider_id)
        if window is None:
            window = _FixedWindow(count=0, window_start=now)
            self._fixed_windows[provider_id] = window

        if now - window.window_start >= config.window_seconds:
            window.count = 0
            window.window_start = now

        if window.count < config.max_requests:
            window.count += 1
            return True
        return False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self, provider_id: str) -> RateLimitStatus:
        """Report remaining capacity without consuming it."""
        with self._lock:
            config = self.get_config(provider_id)
            now = self._clock()
            remaining = config.max_requests
            reset_in = 0.0

            if config.strategy is RateLimitStrategy.SLIDING_WINDOW:
                log = self._request_logs.get(provider_id)
                cutoff = now - config.window_seconds
                valid = [stamp for stamp in log or () if stamp > cutoff]
                remaining = max(0, config.max_requests - len(valid))
                if valid:
                    reset_in = max(0.0, valid[0] + config.window_seconds - now)
            elif config.strategy is RateLimitStrategy.FIXED_WINDOW:
                window = self._fixed_windows.get(provider_id)
                if window is not None and now - window.window_start < config.window_seconds:
                    remaining = max(0, config.max_requests - window.count)
                    reset_in = max(0.0, window.window_start + config.window_seconds - now)
            else:
                bucket = self._buckets.get(provider_id)
                if bucket is not None:
                    elapsed = max(0.0, now - bucket.last_refill)
                    tokens = min(
                        float(config.max_requests), bucket.tokens + elapsed * config.refill_rate
                    )
                    remaining = min(config.max_requests, math.floor(tokens))
                    if remaining == 0:
                        reset_in = (1 - tokens) / config.refill_rate

        return RateLimitStatus(
            provider_id=provider_id,
            remaining=remaining,
            limit=config.max_requests,
            reset_in=reset_in,
            is_limited=remaining == 0,
        )

    def get_all_statuses(self) -> list[RateLimitStatus]:
        with self._lock:
            provider_ids = dict.fromkeys(
                [
                    *self._configs,
                    *self._buckets,
                    *self._request_logs,
                    *self._fixed_windows,
                ]
            )
        return [self.get_status(provider_id) for provider_id in provider_ids]

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def wait_for_slot(self, provider_id: str) -> None:
        """Sleep until the source's limit resets; return at once when not limited."""
        status = self.get_status(provider_id)
        if not status.is_limited:
            return

        logger.info(
            "rate_limit_waiting",
            extra={"provider_id": provider_id, "wait_seconds": round(status.reset_in, 3)},
        )
        await self._sleep(status.reset_in)

    async def execute(self, provider_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` once the limit admits a request, waiting as long as needed."""
        while not self.check_limit(provider_id):
            await self.wait_for_slot(provider_id)
        return await operation()

    # ------------------------------------------------------------------
    # Server feedback
    # ------------------------------------------------------------------

    def update_from_headers(self, provider_id: str, headers: Mapping[str, str]) -> None:
        """Reconcile token-bucket state with server-reported rate limit headers.

        Only token-bucket sources are adjusted; reported reset horizons are logged.
        """
        remaining_raw = _get_header(headers, _REMAINING_HEADERS)
        limit_raw = _get_header(headers, _LIMIT_HEADERS)
        reset_raw = _get_header(headers, _RESET_HEADERS)

        if remaining_raw and limit_raw:
            try:
                remaining = int(remaining_raw)
                limit = int(limit_raw)
            except ValueError:
                logger.warning(
                    "rate_limit_headers_invalid",
                    extra={
                        "provider_id": provider_id,
                        "remaining": remaining_raw,
                        "limit": limit_raw,
                    },
                )
            else:
                with self._lock:
                    config = self.get_config(provider_id)
                    if config.strategy is RateLimitStrategy.TOKEN_BUCKET:
                        tokens = float(max(0, min(remaining, config.max_requests)))
                        self._buckets[provider_id] = _TokenBucket(
                            tokens=tokens, last_refill=self._clock()
                        )
                logger.debug(
                    "rate_limit_updated_from_headers",
                    extra={"provider_id": provider_id, "remaining": remaining, "limit": limit},
                )

        if reset_raw:
            try:
                reset_at = float(reset_raw)
            except ValueError:
                logger.warning(
                    "rate_limit_reset_header_invalid",
                    extra={"provider_id": provider_id, "reset": reset_raw},
                )
                return
            reset_in = reset_at - self._wall_clock()
            if reset_in > 0:
                logger.info(
                    "rate_limit_reset_reported",
                    extra={"provider_id": provider_id, "reset_in": math.ceil(reset_in)},
                )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self, provider_id: str) -> None:
        with self._lock:
            config = self.get_config(provider_id)
            self._drop_state(provider_id)
            now = self._clock()
            if config.strategy is RateLimitStrategy.TOKEN_BUCKET:
                self._buckets[provider_id] = _TokenBucket(
                    tokens=float(config.max_requests), last_refill=now
                )
            elif config.strategy is RateLimitStrategy.SLIDING_WINDOW:
                self._request_logs[provider_id] = deque()
            else:
                self._fixed_windows[provider_id] = _FixedWindow(count=0, window_start=now)
        logger.info("rate_limit_reset", extra={"provider_id": provider_id})

    def reset_all(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._request_logs.clear()
            self._fixed_windows.clear()
        logger.info("rate_limits_reset_all")

    def cleanup(self) -> int:
        """Purge idle sliding-window and fixed-window state.

        Returns:
            Number of source entries removed.
        """
        removed = 0
        with self._lock:
            now = self._clock()
            for provider_id in list(self._request_logs):
                config = self.get_config(provider_id)
                log = self._request_logs[provider_id]
                cutoff = now - config.window_seconds
                while log and log[0] <= cutoff:
                    log.popleft()
                if not log:
                    del self._request_logs[provider_id]
                    removed += 1

            for provider_id in list(self._fixed_windows):
                config = self.get_config(provider_id)
                window = self._fixed_windows[provider_id]
                if now - window.window_start >= config.window_seconds * 2:
                    del self._fixed_windows[provider_id]
                    removed += 1

        logger.debug("rate_limiter_cleanup_completed", extra={"removed": removed})
        return removed

    def _drop_state(self, provider_id: str) -> None:
        self._buckets.pop(provider_id, None)
        self._request_logs.pop(provider_id, None)
        self._fixed_windows.pop(provider_id, None)


__all__ = [
    "RateLimitConfig",
    "RateLimitStatus",
    "RateLimitStrategy",
    "RateLimiter",
]
