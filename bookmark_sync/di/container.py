"""Dependency injection container for wiring the sync engine.

Each shared service (rate limiter, retry executor, conflict resolver, delay
scheduler) is created exactly once here and passed down explicitly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bookmark_sync.core.logging_utils import setup_json_logging
from bookmark_sync.core.timers import DelayScheduler
from bookmark_sync.services.scheduler import SchedulerService
from bookmark_sync.sync.conflicts import ConflictResolver
from bookmark_sync.sync.orchestrator import SyncContext, SyncOrchestrator
from bookmark_sync.sync.rate_limiter import RateLimitConfig, RateLimiter
from bookmark_sync.sync.retry import RetryExecutor, RetryPolicy

if TYPE_CHECKING:
    from bookmark_sync.config import AppConfig
    from bookmark_sync.sync.protocols import (
        BookmarkStore,
        CheckpointStore,
        NotificationSink,
        ProviderGateway,
        SettingsStore,
    )


def build_sync_context(
    cfg: AppConfig,
    *,
    providers: ProviderGateway,
    bookmarks: BookmarkStore,
    settings: SettingsStore,
    checkpoints: CheckpointStore,
    notifier: NotificationSink,
    delays: DelayScheduler | None = None,
) -> SyncContext:
    """Create the shared services from ``cfg`` and bundle them with the collaborators."""
    delays = delays or DelayScheduler()
    retry_policy = RetryPolicy.from_config(cfg.retry)

    return SyncContext(
        providers=providers,
        bookmarks=bookmarks,
        settings=settings,
        checkpoints=checkpoints,
        notifier=notifier,
        rate_limiter=RateLimiter(RateLimitConfig.from_config(cfg.rate_limit), sleeper=delays.sleep),
        retry=RetryExecutor(retry_policy, sleeper=delays.sleep),
        conflicts=ConflictResolver(cfg.conflicts.default_strategy),
        retry_policy=retry_policy,
        conflict_detection=cfg.conflicts.detection_enabled,
    )


class Container:
    """Owns one sync context and the services built on it.

    Example:
        ```python
        container = Container(load_config(), providers=..., bookmarks=..., settings=...,
                              checkpoints=..., notifier=...)
        scheduler = container.scheduler()
        await scheduler.start()
        ```
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        providers: ProviderGateway,
        bookmarks: BookmarkStore,
        settings: SettingsStore,
        checkpoints: CheckpointStore,
        notifier: NotificationSink,
    ) -> None:
        self.cfg = cfg
        self.delays = DelayScheduler()
        self.context = build_sync_context(
            cfg,
            providers=providers,
            bookmarks=bookmarks,
            settings=settings,
            checkpoints=checkpoints,
            notifier=notifier,
            delays=self.delays,
        )
        self._orchestrator: SyncOrchestrator | None = None
        self._scheduler: SchedulerService | None = None

    def configure_logging(self) -> None:
        runtime = self.cfg.runtime
        setup_json_logging(
            level=runtime.log_level,
            use_loguru=runtime.log_use_loguru,
            log_file=runtime.log_file,
        )

    def orchestrator(self) -> SyncOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = SyncOrchestrator(self.context)
        return self._orchestrator

    def scheduler(self) -> SchedulerService:
        if self._scheduler is None:
            self._scheduler = SchedulerService(
                self.cfg, self.orchestrator(), self.context.rate_limiter
            )
        return self._scheduler

    async def shutdown(self) -> int:
        """Stop the scheduler and cancel pending delays; returns the cancelled count."""
        if self._scheduler is not None:
            await self._scheduler.stop()
        return self.delays.cancel_all()
