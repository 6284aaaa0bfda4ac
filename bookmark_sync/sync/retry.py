"""Retry executor for provider fetches and bookmark mutations.

Operations are zero-argument coroutine factories. Failures are classified by
their tag (see :mod:`bookmark_sync.sync.errors`) unless the policy supplies its
own ``is_retryable`` predicate.
"""

from __future__ import annotations

import dataclasses
import logging
import random
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from bookmark_sync.core.async_utils import raise_if_cancelled
from bookmark_sync.core.time_utils import monotonic
from bookmark_sync.core.timers import DelayScheduler
from bookmark_sync.sync.errors import ErrorKind, classify_error, is_retryable_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from bookmark_sync.config.sync import RetryPolicyConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.25


class RetryStrategy(StrEnum):
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryableErrorType(StrEnum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    AUTH_EXPIRED = "auth_expired"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with backoff. Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    backoff_multiplier: float = 2.0
    use_jitter: bool = True
    # Only enforced with the default classifier; None disables the cap.
    auth_max_retries: int | None = 1
    is_retryable: Callable[[BaseException], bool] | None = None
    on_retry: Callable[[int, float, BaseException], None] | None = None

    @classmethod
    def from_config(cls, config: RetryPolicyConfig, **overrides: Any) -> RetryPolicy:
        values: dict[str, Any] = {
            "max_retries": config.max_retries,
            "initial_delay": config.initial_delay_seconds,
            "max_delay": config.max_delay_seconds,
            "strategy": RetryStrategy(config.strategy),
            "backoff_multiplier": config.backoff_multiplier,
            "use_jitter": config.use_jitter,
            "auth_max_retries": config.auth_max_retries,
        }
        values.update(overrides)
        return cls(**values)

    def replace(self, **changes: Any) -> RetryPolicy:
        return dataclasses.replace(self, **changes)


@dataclass
class RetryResult(Generic[T]):
    success: bool
    attempts: int
    total_time: float
    value: T | None = None
    error: BaseException | None = None


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    *,
    uniform: Callable[[float, float], float] = random.uniform,
) -> float:
    """Return the delay before retry number ``attempt`` (1-based).

    The strategy's raw delay is capped at ``max_delay`` before jitter of up to
    25% in either direction is applied. The result is never negative.
    """
    if policy.strategy == RetryStrategy.CONSTANT:
        delay = policy.initial_delay
    elif policy.strategy == RetryStrategy.LINEAR:
        delay = policy.initial_delay * attempt
    else:
        delay = policy.initial_delay * (policy.backoff_multiplier ** (attempt - 1))

    delay = min(delay, policy.max_delay)

    if policy.use_jitter:
        jitter = delay * JITTER_RATIO
        delay += uniform(-jitter, jitter)

    return max(0.0, delay)


def matches_error_type(exc: BaseException, error_type: RetryableErrorType) -> bool:
    """Whether ``exc`` belongs to the named retryable class."""
    if error_type is RetryableErrorType.TRANSIENT:
        return is_retryable_error(exc)

    kind = classify_error(exc)
    if error_type is RetryableErrorType.NETWORK:
        return kind is ErrorKind.NETWORK
    if error_type is RetryableErrorType.TIMEOUT:
        return kind is ErrorKind.TIMEOUT
    if error_type is RetryableErrorType.RATE_LIMIT:
        return kind is ErrorKind.RATE_LIMIT
    if error_type is RetryableErrorType.SERVER_ERROR:
        return kind is ErrorKind.SERVER_ERROR
    return kind is ErrorKind.AUTH_EXPIRED


class RetryExecutor:
    """Runs async operations with bounded retries and configurable backoff."""

    def __init__(
        self,
        default_policy: RetryPolicy | None = None,
        *,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] = monotonic,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.default_policy = default_policy or RetryPolicy()
        self._sleep = sleeper or DelayScheduler().sleep
        self._clock = clock
        self._uniform = uniform

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        operation_name: str = "operation",
        correlation_id: str | None = None,
    ) -> RetryResult[T]:
        """Run ``operation`` until it succeeds, fails permanently, or retries run out.

        Never raises for operation failures; the last error is returned on the result.
        """
        policy = policy or self.default_policy
        started = self._clock()
        attempts = 0

        while True:
            try:
                value = await operation()
            except Exception as exc:
                raise_if_cancelled(exc)
                attempts += 1

                if attempts > policy.max_retries:
                    logger.warning(
                        "retry_exhausted",
                        extra={
                            "correlation_id": correlation_id,
                            "operation": operation_name,
                            "attempts": attempts,
                            "error": str(exc),
                        },
                    )
                    return self._failure(exc, attempts, started)

                if not self._should_retry(exc, policy, attempts):
                    logger.debug(
                        "retry_not_retryable",
                        extra={
                            "correlation_id": correlation_id,
                            "operation": operation_name,
                            "attempts": attempts,
                            "error_type": type(exc).__name__,
                            "error": str(exc),
                        },
                    )
                    return self._failure(exc, attempts, started)

                delay = compute_delay(policy, attempts, uniform=self._uniform)
                if policy.on_retry is not None:
                    policy.on_retry(attempts, delay, exc)

                logger.info(
                    "retrying_operation",
                    extra={
                        "correlation_id": correlation_id,
                        "operation": operation_name,
                        "attempt": attempts,
                        "max_retries": policy.max_retries,
                        "delay_seconds": round(delay, 3),
                        "error": str(exc),
                    },
                )
                await self._sleep(delay)
                continue

            if attempts:
                logger.info(
                    "retry_succeeded",
                    extra={
                        "correlation_id": correlation_id,
                        "operation": operation_name,
                        "attempts": attempts + 1,
                    },
                )
            return RetryResult(
                success=True,
                value=value,
                attempts=attempts + 1,
                total_time=self._clock() - started,
            )

    async def retry_on(
        self,
        operation: Callable[[], Awaitable[T]],
        error_type: RetryableErrorType | str,
        policy: RetryPolicy | None = None,
        *,
        operation_name: str = "operation",
    ) -> RetryResult[T]:
        """Like :meth:`execute` but only errors of ``error_type`` are retried."""
        error_type = RetryableErrorType(error_type)
        base = policy or self.default_policy
        restricted = base.replace(is_retryable=lambda exc: matches_error_type(exc, error_type))
        return await self.execute(operation, restricted, operation_name=operation_name)

    def wrap(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        operation_name: str = "operation",
    ) -> Callable[[], Awaitable[T]]:
        """Return a callable that raises the final error instead of returning a result."""

        async def wrapped() -> T:
            return await self.run(operation, policy, operation_name=operation_name)

        return wrapped

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        operation_name: str = "operation",
        correlation_id: str | None = None,
    ) -> T:
        """Execute with retries and re-raise the last error on failure."""
        result = await self.execute(
            operation, policy, operation_name=operation_name, correlation_id=correlation_id
        )
        if not result.success and result.error is not None:
            raise result.error
        return result.value  # type: ignore[return-value]

    def _should_retry(self, exc: BaseException, policy: RetryPolicy, attempts: int) -> bool:
        if policy.is_retryable is not None:
            return policy.is_retryable(exc)
        if not is_retryable_error(exc):
            return False
        if policy.auth_max_retries is not None and classify_error(exc) is ErrorKind.AUTH_EXPIRED:
            return attempts <= policy.auth_max_retries
        return True

    def _failure(self, exc: BaseException, attempts: int, started: float) -> RetryResult[Any]:
        return RetryResult(
            success=False,
            error=exc,
            attempts=attempts,
            total_time=self._clock() - started,
        )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    executor: RetryExecutor | None = None,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` with retries, raising its last error on exhaustion."""
    executor = executor or RetryExecutor()
    return await executor.run(operation, policy, operation_name=operation_name)


__all__ = [
    "RetryExecutor",
    "RetryPolicy",
    "RetryResult",
    "RetryStrategy",
    "RetryableErrorType",
    "compute_delay",
    "matches_error_type",
    "with_retry",
]
