"""Background scheduler for periodic sync, retries and rate-limiter cleanup."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from bookmark_sync.core.time_utils import utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from bookmark_sync.config import AppConfig
    from bookmark_sync.sync.models import SyncResult, SyncRunSummary
    from bookmark_sync.sync.orchestrator import SyncOrchestrator
    from bookmark_sync.sync.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "periodic_sync"
CLEANUP_JOB_ID = "rate_limit_cleanup"
RETRY_JOB_PREFIX = "retry_sync_"


class SchedulerService:
    """Manages the periodic sync, per-provider retries and the rate-limiter sweep."""

    def __init__(
        self,
        cfg: AppConfig,
        orchestrator: SyncOrchestrator,
        rate_limiter: RateLimiter,
    ) -> None:
        """Initialize scheduler service.

        Args:
            cfg: Application configuration
            orchestrator: Sync loop the jobs drive
            rate_limiter: Limiter whose idle state the cleanup job purges
        """
        self.cfg = cfg
        self.orchestrator = orchestrator
        self.rate_limiter = rate_limiter
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False
        # one cycle at a time: full syncs and provider retries share the bookmark store
        self._cycle_lock = asyncio.Lock()
        self._retry_counts: dict[str, int] = {}

    async def start(self) -> None:
        """Start the scheduler with configured jobs."""
        if self._started:
            logger.warning("scheduler_already_started")
            return

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler_cfg = self.cfg.scheduler

        if scheduler_cfg.enabled:
            # apscheduler pauses a job added with next_run_time=None
            startup: dict[str, Any] = (
                {"next_run_time": utc_now()} if scheduler_cfg.sync_on_startup else {}
            )
            self._scheduler.add_job(
                self._run_periodic_sync,
                trigger=IntervalTrigger(seconds=scheduler_cfg.interval_seconds),
                id=SYNC_JOB_ID,
                name="Provider Bookmark Sync",
                replace_existing=True,
                max_instances=1,  # Prevent overlapping runs
                **startup,
            )
            logger.info(
                "scheduler_sync_job_added",
                extra={
                    "job_id": SYNC_JOB_ID,
                    "interval_seconds": scheduler_cfg.interval_seconds,
                    "sync_on_startup": scheduler_cfg.sync_on_startup,
                },
            )
        else:
            logger.info("scheduler_sync_job_skipped", extra={"enabled": scheduler_cfg.enabled})

        self._scheduler.add_job(
            self._run_cleanup,
            trigger=IntervalTrigger(seconds=self.cfg.rate_limit.cleanup_interval_seconds),
            id=CLEANUP_JOB_ID,
            name="Rate Limiter Cleanup",
            replace_existing=True,
            max_instances=1,
        )

        self._scheduler.start()
        self._started = True
        logger.info("scheduler_started")

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._started = False
            self._retry_counts.clear()
            logger.info("scheduler_stopped")

    async def trigger_sync(self) -> SyncRunSummary | None:
        """Run a full sync now; returns ``None`` if one is already running."""
        if self._cycle_lock.locked():
            logger.info("sync_already_in_progress")
            return None

        async with self._cycle_lock:
            summary = await self.orchestrator.sync_all()

        for result in summary.results:
            self._track_result(result)
        return summary

    async def sync_provider_with_retry(self, provider_id: str) -> SyncResult:
        """Sync one provider and schedule a retry if it fails.

        Waits for a running cycle to finish instead of overlapping it.
        """
        if self._cycle_lock.locked():
            logger.info("provider_retry_waiting_for_sync", extra={"provider_id": provider_id})
        async with self._cycle_lock:
            result = await self.orchestrator.sync_provider(provider_id)
        self._track_result(result)
        return result

    async def _run_periodic_sync(self) -> None:
        """Execute scheduled sync."""
        correlation_id = f"scheduled_{utc_now().strftime('%Y%m%d_%H%M%S')}"
        logger.info("scheduled_sync_starting", extra={"cid": correlation_id})

        try:
            summary = await self.trigger_sync()
        except Exception as e:
            logger.exception(
                "scheduled_sync_failed",
                extra={"cid": correlation_id, "error": str(e)},
            )
            return

        if summary is None:
            return
        logger.info(
            "scheduled_sync_complete",
            extra={
                "cid": correlation_id,
                "success_count": summary.success_count,
                "providers": len(summary.results),
                "duration_seconds": summary.duration,
            },
        )

    async def _run_provider_retry(self, provider_id: str) -> None:
        logger.info("scheduled_provider_retry_starting", extra={"provider_id": provider_id})
        try:
            await self.sync_provider_with_retry(provider_id)
        except Exception as e:
            logger.exception(
                "scheduled_provider_retry_failed",
                extra={"provider_id": provider_id, "error": str(e)},
            )

    def _run_cleanup(self) -> None:
        removed = self.rate_limiter.cleanup()
        if removed:
            logger.info("rate_limiter_cleanup", extra={"removed": removed})

    def _track_result(self, result: SyncResult) -> None:
        provider_id = result.provider_id
        if result.success:
            self._retry_counts.pop(provider_id, None)
            return

        retries = self._retry_counts.get(provider_id, 0)
        max_retries = self.cfg.scheduler.max_provider_retries
        if retries >= max_retries:
            self._retry_counts.pop(provider_id, None)
            logger.warning(
                "provider_retry_limit_reached",
                extra={"provider_id": provider_id, "max_retries": max_retries},
            )
            return

        self._retry_counts[provider_id] = retries + 1
        self._schedule_provider_retry(provider_id)

    def _schedule_provider_retry(self, provider_id: str) -> None:
        if not self._scheduler or not self._started:
            logger.debug("provider_retry_not_scheduled", extra={"provider_id": provider_id})
            return

        delay = self.cfg.scheduler.retry_delay_seconds
        job_id = f"{RETRY_JOB_PREFIX}{provider_id}"
        self._scheduler.add_job(
            self._run_provider_retry,
            trigger=DateTrigger(run_date=utc_now() + timedelta(seconds=delay)),
            args=[provider_id],
            id=job_id,
            name=f"Retry sync for {provider_id}",
            replace_existing=True,
        )
        logger.info(
            "provider_retry_scheduled",
            extra={
                "provider_id": provider_id,
                "job_id": job_id,
                "attempt": self._retry_counts.get(provider_id, 0),
                "delay_seconds": delay,
            },
        )

    def get_retry_count(self, provider_id: str) -> int:
        return self._retry_counts.get(provider_id, 0)

    def get_next_run_time(self, job_id: str) -> datetime | None:
        """Get next scheduled run time for a job.

        Args:
            job_id: Job identifier (e.g., "periodic_sync" or "retry_sync_github")

        Returns:
            Next run time or None if job doesn't exist or scheduler not started
        """
        if not self._scheduler or not self._started:
            return None
        job = self._scheduler.get_job(job_id)
        return job.next_run_time if job else None

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._started and self._scheduler is not None
