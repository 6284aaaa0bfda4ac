"""Reconciliation loop: fetch, diff, resolve, apply, checkpoint, notify."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from bookmark_sync.core.async_utils import raise_if_cancelled
from bookmark_sync.core.logging_utils import generate_correlation_id, truncate_log_content
from bookmark_sync.core.time_utils import monotonic, utc_now
from bookmark_sync.sync.diff import compute_diff
from bookmark_sync.sync.conflicts import conflict_key
from bookmark_sync.sync.errors import (
    ConflictUnresolvedError,
    ErrorKind,
    FolderValidationError,
    classify_error,
)
from bookmark_sync.sync.models import (
    BookmarkChange,
    ItemCheckpoint,
    Notification,
    NotificationType,
    SortOrder,
    SyncResult,
    SyncRunSummary,
)
from bookmark_sync.sync.ordering import format_folder_title, strip_folder_stats

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from bookmark_sync.sync.conflicts import ConflictResolver
    from bookmark_sync.sync.models import (
        FolderTitleOptions,
        NotificationSettings,
        RemoteItem,
        SyncDiff,
        UpdateItem,
    )
    from bookmark_sync.sync.protocols import (
        BookmarkStore,
        CheckpointStore,
        NotificationSink,
        ProviderGateway,
        SettingsStore,
    )
    from bookmark_sync.sync.rate_limiter import RateLimiter
    from bookmark_sync.sync.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FAILURE_NOTIFICATIONS = {
    ErrorKind.AUTH_EXPIRED: NotificationType.AUTH_REQUIRED,
    ErrorKind.RATE_LIMIT: NotificationType.RATE_LIMIT,
}


@dataclass(frozen=True)
class SyncContext:
    """Everything one sync engine instance works with.

    Built once per process (see :func:`bookmark_sync.di.container.build_sync_context`)
    and handed to the orchestrator instead of module-level singletons.
    """

    providers: ProviderGateway
    bookmarks: BookmarkStore
    settings: SettingsStore
    checkpoints: CheckpointStore
    notifier: NotificationSink
    rate_limiter: RateLimiter
    retry: RetryExecutor
    conflicts: ConflictResolver
    retry_policy: RetryPolicy | None = None
    conflict_detection: bool = True
    clock: Callable[[], datetime] = utc_now
    timer: Callable[[], float] = monotonic
    title_formatter: Callable[[str, list[RemoteItem], FolderTitleOptions], str] = (
        format_folder_title
    )


@dataclass
class AppliedChanges:
    added: int = 0
    updated: int = 0
    deleted: int = 0
    skipped_conflicts: int = 0
    conflict_ids: list[str] = field(default_factory=list)


class SyncOrchestrator:
    """Runs sync cycles for every registered source.

    Sources are processed sequentially. A failure in one source's cycle is recorded
    on its :class:`SyncResult` and never stops the remaining sources.
    """

    def __init__(self, context: SyncContext) -> None:
        self._ctx = context

    @property
    def context(self) -> SyncContext:
        return self._ctx

    async def sync_all(self) -> SyncRunSummary:
        correlation_id = generate_correlation_id()
        started = self._ctx.timer()
        logger.info("sync_all_started", extra={"correlation_id": correlation_id})

        results: list[SyncResult] = []
        for provider_id in self._ctx.providers.list_providers():
            status = self._ctx.providers.get_status(provider_id)
            if status is None or not (status.enabled and status.authenticated):
                logger.debug(
                    "sync_provider_skipped",
                    extra={
                        "correlation_id": correlation_id,
                        "provider_id": provider_id,
                        "enabled": bool(status and status.enabled),
                        "authenticated": bool(status and status.authenticated),
                    },
                )
                continue
            results.append(await self.sync_provider(provider_id))

        success_count = sum(1 for result in results if result.success)
        duration = self._ctx.timer() - started
        logger.info(
            "sync_all_completed",
            extra={
                "correlation_id": correlation_id,
                "success_count": success_count,
                "providers": len(results),
                "duration_seconds": round(duration, 3),
            },
        )
        return SyncRunSummary(
            results=results,
            success_count=success_count,
            duration=duration,
            correlation_id=correlation_id,
        )

    async def sync_provider(
        self, provider_id: str, *, correlation_id: str | None = None
    ) -> SyncResult:
        correlation_id = correlation_id or generate_correlation_id()
        started = self._ctx.timer()
        logger.info(
            "sync_provider_started",
            extra={"correlation_id": correlation_id, "provider_id": provider_id},
        )

        try:
            config = await self._ctx.settings.get_provider_config(provider_id)
            if config is None or not config.folder_id:
                msg = f"Provider {provider_id} has no folder configured"
                raise FolderValidationError(msg, provider_id=provider_id)
            folder_id = config.folder_id

            folder = await self._ctx.bookmarks.get_folder(folder_id)
            if folder is None:
                msg = f"Folder {folder_id} not found"
                raise FolderValidationError(msg, provider_id=provider_id)

            items = await self._guarded(
                provider_id,
                lambda: self._ctx.providers.fetch_items(provider_id),
                operation_name="fetch_items",
                correlation_id=correlation_id,
            )
            logger.debug(
                "sync_items_fetched",
                extra={
                    "correlation_id": correlation_id,
                    "provider_id": provider_id,
                    "items": len(items),
                },
            )

            diff = await self.calculate_diff(folder_id, items)
            logger.debug(
                "sync_diff_calculated",
                extra={
                    "correlation_id": correlation_id,
                    "provider_id": provider_id,
                    "to_add": len(diff.to_add),
                    "to_update": len(diff.to_update),
                    "to_delete": len(diff.to_delete),
                },
            )

            applied = await self.apply_changes(
                provider_id, folder_id, diff, config.sort_order, correlation_id=correlation_id
            )

            await self._guarded(
                provider_id,
                lambda: self._ctx.bookmarks.reorder_folder(folder_id, items, config.sort_order),
                operation_name="reorder_folder",
                correlation_id=correlation_id,
            )
            await self._update_folder_title(
                provider_id, folder_id, folder.title, items, config.folder_title, correlation_id
            )
            await self.set_last_sync_time(provider_id, self._ctx.clock())
        except Exception as exc:
            raise_if_cancelled(exc)
            return await self._handle_failure(provider_id, exc, started, correlation_id)

        duration = self._ctx.timer() - started
        result = SyncResult(
            provider_id=provider_id,
            success=True,
            items_added=applied.added,
            items_updated=applied.updated,
            items_deleted=applied.deleted,
            skipped_conflicts=applied.skipped_conflicts,
            conflict_ids=applied.conflict_ids,
            duration=duration,
            correlation_id=correlation_id,
        )
        logger.info(
            "sync_provider_completed",
            extra={
                "correlation_id": correlation_id,
                "provider_id": provider_id,
                "items_added": result.items_added,
                "items_updated": result.items_updated,
                "items_deleted": result.items_deleted,
                "skipped_conflicts": result.skipped_conflicts,
                "duration_seconds": round(duration, 3),
            },
        )
        await self._notify_success(provider_id, result)
        return result

    async def calculate_diff(self, folder_id: str, items: list[RemoteItem]) -> SyncDiff:
        current = await self._ctx.bookmarks.get_folder_contents(folder_id)
        return compute_diff(current, items)

    async def apply_changes(
        self,
        provider_id: str,
        folder_id: str,
        diff: SyncDiff,
        sort_order: SortOrder | str = SortOrder.ALPHABETICAL,
        *,
        correlation_id: str | None = None,
    ) -> AppliedChanges:
        """Apply ``diff`` to the folder in delete, update, add order.

        Keeps the per-item checkpoint map in step with what was written. Updates whose
        local title was edited since the last sync go through conflict resolution.
        """
        sort_order = SortOrder(sort_order)
        applied = AppliedChanges()
        if diff.is_empty:
            return applied

        if diff.to_delete:
            await self._guarded(
                provider_id,
                lambda: self._ctx.bookmarks.batch_delete(diff.to_delete),
                operation_name="batch_delete",
                correlation_id=correlation_id,
            )
            applied.deleted = len(diff.to_delete)

        if diff.to_update:
            await self._apply_updates(provider_id, diff.to_update, applied, correlation_id)

        if diff.to_add:
            bookmark_ids = await self._guarded(
                provider_id,
                self._creator(folder_id, diff.to_add, sort_order),
                operation_name="batch_create",
                correlation_id=correlation_id,
            )
            applied.added = len(bookmark_ids)
            if len(bookmark_ids) == len(diff.to_add):
                now = self._ctx.clock()
                await self._ctx.checkpoints.save_item_checkpoints(
                    provider_id,
                    {
                        item.id: ItemCheckpoint(
                            item_id=item.id,
                            bookmark_id=bookmark_id,
                            provider_id=provider_id,
                            title=item.title,
                            last_updated=now,
                            created_at=item.created_at,
                            updated_at=item.updated_at,
                            last_modified=item.last_modified,
                        )
                        for item, bookmark_id in zip(diff.to_add, bookmark_ids, strict=True)
                    },
                )
            else:
                logger.warning(
                    "sync_create_count_mismatch",
                    extra={
                        "correlation_id": correlation_id,
                        "provider_id": provider_id,
                        "requested": len(diff.to_add),
                        "created": len(bookmark_ids),
                    },
                )

        logger.info(
            "sync_changes_applied",
            extra={
                "correlation_id": correlation_id,
                "provider_id": provider_id,
                "items_added": applied.added,
                "items_updated": applied.updated,
                "items_deleted": applied.deleted,
                "skipped_conflicts": applied.skipped_conflicts,
            },
        )
        return applied

    def _creator(
        self, folder_id: str, items: list[RemoteItem], sort_order: SortOrder
    ) -> Callable[[], Awaitable[list[str]]]:
        """Build the ``batch_create`` call handed to the retry executor.

        A failed attempt may already have created part of the batch, so later attempts
        re-read the folder and only create items whose URL is still missing.
        """
        attempts = 0

        async def create() -> list[str]:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                return await self._ctx.bookmarks.batch_create(folder_id, items, sort_order)

            contents = await self._ctx.bookmarks.get_folder_contents(folder_id)
            existing = {bookmark.url: bookmark.bookmark_id for bookmark in contents}
            missing = [item for item in items if item.url not in existing]
            logger.info(
                "sync_create_resumed",
                extra={"folder_id": folder_id, "present": len(items) - len(missing)},
            )
            created = (
                await self._ctx.bookmarks.batch_create(folder_id, missing, sort_order)
                if missing
                else []
            )
            if len(created) != len(missing):
                return created
            fresh = dict(zip((item.url for item in missing), created, strict=True))
            return [existing.get(item.url) or fresh[item.url] for item in items]

        return create

    async def _apply_updates(
        self,
        provider_id: str,
        updates: list[UpdateItem],
        applied: AppliedChanges,
        correlation_id: str | None,
    ) -> None:
        checkpoints = await self._ctx.checkpoints.get_item_checkpoints(provider_id)
        changes: list[BookmarkChange] = []
        written: dict[str, tuple[UpdateItem, str]] = {}
        refreshed: dict[str, ItemCheckpoint] = {}
        now = self._ctx.clock()

        for update in updates:
            item_id = update.new_item.id
            checkpoint = checkpoints.get(item_id)
            title = await self._resolve_update_title(
                provider_id, update, checkpoint, applied, correlation_id
            )
            if title is None:
                continue
            if title == update.old_item.title:
                remote_title = update.new_item.title
                if checkpoint is not None and checkpoint.declined_remote_title != remote_title:
                    # keep the local title until the remote one changes again
                    refreshed[item_id] = checkpoint.model_copy(
                        update={
                            "title": title,
                            "declined_remote_title": remote_title,
                            "last_updated": now,
                        }
                    )
                continue
            changes.append(BookmarkChange(bookmark_id=update.bookmark_id, title=title))
            written[item_id] = (update, title)

        if changes:
            await self._guarded(
                provider_id,
                lambda: self._ctx.bookmarks.batch_update(changes),
                operation_name="batch_update",
                correlation_id=correlation_id,
            )
            applied.updated = len(changes)

        for item_id, (update, title) in written.items():
            existing = checkpoints.get(item_id)
            if existing is None:
                continue
            remote_title = update.new_item.title
            refreshed[item_id] = existing.model_copy(
                update={
                    "title": title,
                    "last_updated": now,
                    "created_at": update.new_item.created_at,
                    "updated_at": update.new_item.updated_at,
                    "last_modified": update.new_item.last_modified,
                    "declined_remote_title": None if title == remote_title else remote_title,
                }
            )
        if refreshed:
            await self._ctx.checkpoints.save_item_checkpoints(provider_id, refreshed)

    async def _resolve_update_title(
        self,
        provider_id: str,
        update: UpdateItem,
        checkpoint: ItemCheckpoint | None,
        applied: AppliedChanges,
        correlation_id: str | None,
    ) -> str | None:
        """Return the title to write for ``update``, or ``None`` to withhold it.

        A pending manual decision for the item is applied before any new detection.
        Returning the current local title keeps the bookmark as it is.
        """
        remote = update.new_item
        local_title = update.old_item.title
        if not self._ctx.conflict_detection or checkpoint is None:
            return remote.title
        if checkpoint.declined_remote_title == remote.title:
            return None
        if checkpoint.title == local_title:
            return remote.title

        decision = self._ctx.conflicts.take_manual_resolution(conflict_key(provider_id, remote.id))
        if decision is not None:
            if (
                decision.conflict.remote.title == remote.title
                and decision.conflict.local.title == local_title
            ):
                logger.info(
                    "sync_manual_resolution_applied",
                    extra={
                        "correlation_id": correlation_id,
                        "provider_id": provider_id,
                        "conflict_id": decision.conflict.id,
                    },
                )
                # delete_both leaves the local bookmark untouched
                return decision.resolved.title if decision.resolved else local_title
            logger.info(
                "sync_manual_resolution_stale",
                extra={
                    "correlation_id": correlation_id,
                    "provider_id": provider_id,
                    "conflict_id": decision.conflict.id,
                },
            )

        local_view = remote.model_copy(
            update={
                "title": local_title,
                "url": update.old_item.url,
                "last_modified": update.old_item.modified_at,
            }
        )
        conflict = self._ctx.conflicts.detect_conflict(local_view, remote, provider_id)
        if conflict is None:
            return remote.title

        resolution = self._ctx.conflicts.resolve_conflict(conflict)
        try:
            resolved = self._ctx.conflicts.winning_item(resolution)
        except ConflictUnresolvedError as exc:
            applied.skipped_conflicts += 1
            applied.conflict_ids.append(conflict.id)
            logger.info(
                "sync_update_withheld",
                extra={
                    "correlation_id": correlation_id,
                    "provider_id": provider_id,
                    "conflict_id": exc.conflict_id,
                    "error_kind": exc.kind.value,
                },
            )
            await self._notify_conflict(provider_id, conflict.id, remote)
            return None
        return resolved.title if resolved else local_title

    async def get_last_sync_time(self, provider_id: str) -> datetime | None:
        try:
            return await self._ctx.checkpoints.get_last_sync(provider_id)
        except Exception:
            logger.exception("last_sync_read_failed", extra={"provider_id": provider_id})
            return None

    async def set_last_sync_time(self, provider_id: str, timestamp: datetime) -> None:
        try:
            await self._ctx.checkpoints.set_last_sync(provider_id, timestamp)
        except Exception:
            logger.exception("last_sync_write_failed", extra={"provider_id": provider_id})

    async def _update_folder_title(
        self,
        provider_id: str,
        folder_id: str,
        current_title: str,
        items: list[RemoteItem],
        options: FolderTitleOptions,
        correlation_id: str,
    ) -> None:
        try:
            new_title = self._ctx.title_formatter(strip_folder_stats(current_title), items, options)
            if new_title == current_title:
                return
            await self._guarded(
                provider_id,
                lambda: self._ctx.bookmarks.update_bookmark(folder_id, title=new_title),
                operation_name="update_folder_title",
                correlation_id=correlation_id,
            )
            logger.debug(
                "folder_title_updated",
                extra={
                    "correlation_id": correlation_id,
                    "provider_id": provider_id,
                    "old_title": current_title,
                    "new_title": new_title,
                },
            )
        except Exception:
            logger.exception(
                "folder_title_update_failed",
                extra={"correlation_id": correlation_id, "provider_id": provider_id},
            )

    async def _guarded(
        self,
        provider_id: str,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        correlation_id: str | None,
    ) -> T:
        """Run a provider or bookmark call through the rate limiter and retry executor."""
        return await self._ctx.retry.run(
            lambda: self._ctx.rate_limiter.execute(provider_id, operation),
            self._ctx.retry_policy,
            operation_name=operation_name,
            correlation_id=correlation_id,
        )

    async def _handle_failure(
        self, provider_id: str, exc: Exception, started: float, correlation_id: str
    ) -> SyncResult:
        duration = self._ctx.timer() - started
        message = str(exc) or type(exc).__name__
        kind = classify_error(exc)
        logger.error(
            "sync_provider_failed",
            exc_info=kind is ErrorKind.UNKNOWN,
            extra={
                "correlation_id": correlation_id,
                "provider_id": provider_id,
                "error_kind": kind.value,
                "error": truncate_log_content(message, 500),
                "duration_seconds": round(duration, 3),
            },
        )

        settings = await self._notification_settings()
        if settings is not None and settings.enable_notifications and settings.notify_on_error:
            name = self._ctx.providers.display_name(provider_id)
            notification_type = _FAILURE_NOTIFICATIONS.get(kind, NotificationType.SYNC_ERROR)
            await self._send(
                Notification(
                    type=notification_type,
                    title=f"{name} sync failed",
                    message=truncate_log_content(message, 200) or "",
                    provider_id=provider_id,
                    context={"error_kind": kind.value},
                )
            )

        return SyncResult(
            provider_id=provider_id,
            success=False,
            error=message,
            duration=duration,
            correlation_id=correlation_id,
        )

    async def _notify_success(self, provider_id: str, result: SyncResult) -> None:
        settings = await self._notification_settings()
        if settings is None or not (settings.enable_notifications and settings.notify_on_success):
            logger.debug("sync_success_notification_disabled", extra={"provider_id": provider_id})
            return

        parts: list[str] = []
        if result.items_added:
            parts.append(f"{result.items_added} added")
        if result.items_updated:
            parts.append(f"{result.items_updated} updated")
        if result.items_deleted:
            parts.append(f"{result.items_deleted} removed")
        if result.skipped_conflicts:
            parts.append(f"{result.skipped_conflicts} awaiting conflict resolution")

        name = self._ctx.providers.display_name(provider_id)
        await self._send(
            Notification(
                type=NotificationType.SYNC_PARTIAL
                if result.skipped_conflicts
                else NotificationType.SYNC_SUCCESS,
                title=f"{name} synced successfully",
                message=", ".join(parts) if parts else "No changes",
                provider_id=provider_id,
                context={
                    "items_added": result.items_added,
                    "items_updated": result.items_updated,
                    "items_deleted": result.items_deleted,
                    "conflict_ids": result.conflict_ids,
                },
            )
        )

    async def _notify_conflict(self, provider_id: str, conflict_id: str, item: RemoteItem) -> None:
        settings = await self._notification_settings()
        if settings is None or not settings.enable_notifications:
            return
        name = self._ctx.providers.display_name(provider_id)
        await self._send(
            Notification(
                type=NotificationType.CONFLICT_DETECTED,
                title=f"{name} conflict needs review",
                message=f'"{item.title}" was changed locally and remotely',
                provider_id=provider_id,
                context={"conflict_id": conflict_id, "url": item.url},
            )
        )

    async def _notification_settings(self) -> NotificationSettings | None:
        try:
            return await self._ctx.settings.get_notification_settings()
        except Exception:
            logger.exception("notification_settings_read_failed")
            return None

    async def _send(self, notification: Notification) -> None:
        try:
            await self._ctx.notifier.notify(notification)
        except Exception:
            logger.exception(
                "notification_failed",
                extra={
                    "provider_id": notification.provider_id,
                    "notification_type": notification.type.value,
                },
            )


__all__ = ["AppliedChanges", "SyncContext", "SyncOrchestrator"]