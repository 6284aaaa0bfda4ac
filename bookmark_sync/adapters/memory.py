"""In-memory collaborators for the sync engine.

They implement the ports in :mod:`bookmark_sync.sync.protocols` without a browser
or database, and back the test-suite.
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from typing import TYPE_CHECKING

from bookmark_sync.sync.models import (
    BookmarkFolder,
    LocalBookmarkRecord,
    NotificationSettings,
    ProviderConfig,
    ProviderStatus,
    SortOrder,
)
from bookmark_sync.sync.ordering import sort_items

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from bookmark_sync.sync.models import (
        BookmarkChange,
        ItemCheckpoint,
        Notification,
        RemoteItem,
    )

logger = logging.getLogger(__name__)


class BookmarkNotFoundError(LookupError):
    """Raised when a bookmark or folder id is unknown to the store."""


class InMemoryBookmarkStore:
    """Folder tree one level deep: folders hold ordered bookmarks."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._folders: dict[str, BookmarkFolder] = {}
        self._children: dict[str, list[str]] = {}
        self._bookmarks: dict[str, LocalBookmarkRecord] = {}
        self.calls: list[str] = []

    def _next_id(self) -> str:
        return str(next(self._ids))

    # Seeding helpers, not part of the store contract

    def add_folder(self, title: str) -> str:
        folder_id = self._next_id()
        self._folders[folder_id] = BookmarkFolder(id=folder_id, title=title)
        self._children[folder_id] = []
        return folder_id

    def add_bookmark(self, folder_id: str, url: str, title: str) -> str:
        bookmark_id = self._next_id()
        self._bookmarks[bookmark_id] = LocalBookmarkRecord(
            bookmark_id=bookmark_id, url=url, title=title
        )
        self._children[folder_id].append(bookmark_id)
        return bookmark_id

    def remove_folder(self, folder_id: str) -> None:
        for bookmark_id in self._children.pop(folder_id, []):
            self._bookmarks.pop(bookmark_id, None)
        self._folders.pop(folder_id, None)

    def titles(self, folder_id: str) -> list[str]:
        return [self._bookmarks[bookmark_id].title for bookmark_id in self._children[folder_id]]

    # BookmarkStore

    async def get_folder(self, folder_id: str) -> BookmarkFolder | None:
        self.calls.append("get_folder")
        return self._folders.get(folder_id)

    async def get_folder_contents(self, folder_id: str) -> list[LocalBookmarkRecord]:
        self.calls.append("get_folder_contents")
        if folder_id not in self._folders:
            msg = f"Folder {folder_id} not found"
            raise BookmarkNotFoundError(msg)
        return [self._bookmarks[bookmark_id] for bookmark_id in self._children[folder_id]]

    async def batch_create(
        self, folder_id: str, items: Sequence[RemoteItem], sort_order: SortOrder
    ) -> list[str]:
        """Create bookmarks in sorted position; ids are returned in the order of ``items``."""
        self.calls.append("batch_create")
        if folder_id not in self._folders:
            msg = f"Folder {folder_id} not found"
            raise BookmarkNotFoundError(msg)

        created: dict[int, str] = {}
        for item in sort_items(items, sort_order):
            created[id(item)] = self.add_bookmark(folder_id, item.url, item.title)
        return [created[id(item)] for item in items]

    async def batch_update(self, updates: Sequence[BookmarkChange]) -> None:
        self.calls.append("batch_update")
        for change in updates:
            self._rename(change.bookmark_id, change.title)

    async def batch_delete(self, bookmark_ids: Sequence[str]) -> None:
        self.calls.append("batch_delete")
        for bookmark_id in bookmark_ids:
            if self._bookmarks.pop(bookmark_id, None) is None:
                logger.warning("bookmark_delete_missing", extra={"bookmark_id": bookmark_id})
                continue
            for children in self._children.values():
                if bookmark_id in children:
                    children.remove(bookmark_id)

    async def reorder_folder(
        self, folder_id: str, items: Sequence[RemoteItem], sort_order: SortOrder
    ) -> None:
        """Order bookmarks matching ``items`` by ``sort_order``; others keep their place after."""
        self.calls.append("reorder_folder")
        children = self._children[folder_id]
        by_url: dict[str, deque[str]] = {}
        for bookmark_id in children:
            by_url.setdefault(self._bookmarks[bookmark_id].url, deque()).append(bookmark_id)

        ordered: list[str] = []
        for item in sort_items(items, sort_order):
            matches = by_url.get(item.url)
            if matches:
                ordered.append(matches.popleft())
        placed = set(ordered)
        leftovers = [bookmark_id for bookmark_id in children if bookmark_id not in placed]
        self._children[folder_id] = ordered + leftovers

    async def update_bookmark(self, bookmark_id: str, *, title: str) -> None:
        self.calls.append("update_bookmark")
        self._rename(bookmark_id, title)

    def _rename(self, bookmark_id: str, title: str) -> None:
        if bookmark_id in self._folders:
            self._folders[bookmark_id] = self._folders[bookmark_id].model_copy(
                update={"title": title}
            )
            return
        bookmark = self._bookmarks.get(bookmark_id)
        if bookmark is None:
            msg = f"Bookmark {bookmark_id} not found"
            raise BookmarkNotFoundError(msg)
        self._bookmarks[bookmark_id] = bookmark.model_copy(update={"title": title})


class InMemoryCheckpointStore:
    def __init__(self) -> None:
        self._last_sync: dict[str, datetime] = {}
        self._items: dict[str, dict[str, ItemCheckpoint]] = {}

    async def get_last_sync(self, provider_id: str) -> datetime | None:
        return self._last_sync.get(provider_id)

    async def set_last_sync(self, provider_id: str, timestamp: datetime) -> None:
        self._last_sync[provider_id] = timestamp

    async def get_item_checkpoints(self, provider_id: str) -> dict[str, ItemCheckpoint]:
        return dict(self._items.get(provider_id, {}))

    async def save_item_checkpoints(
        self, provider_id: str, checkpoints: dict[str, ItemCheckpoint]
    ) -> None:
        self._items.setdefault(provider_id, {}).update(checkpoints)


class InMemorySettingsStore:
    def __init__(
        self,
        notification_settings: NotificationSettings | None = None,
        provider_configs: dict[str, ProviderConfig] | None = None,
    ) -> None:
        self.notification_settings = notification_settings or NotificationSettings()
        self._provider_configs = dict(provider_configs or {})

    def set_provider_config(self, provider_id: str, config: ProviderConfig) -> None:
        self._provider_configs[provider_id] = config

    async def get_notification_settings(self) -> NotificationSettings:
        return self.notification_settings

    async def get_provider_config(self, provider_id: str) -> ProviderConfig | None:
        return self._provider_configs.get(provider_id)


class RecordingNotificationSink:
    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        logger.debug(
            "notification_recorded",
            extra={
                "provider_id": notification.provider_id,
                "notification_type": notification.type.value,
            },
        )
        self.notifications.append(notification)


class StaticProviderGateway:
    """Provider gateway serving fixed item lists, with optional scripted failures."""

    def __init__(self) -> None:
        self._items: dict[str, list[RemoteItem]] = {}
        self._names: dict[str, str] = {}
        self._statuses: dict[str, ProviderStatus] = {}
        self._failures: dict[str, deque[Exception]] = {}
        self.fetch_calls: dict[str, int] = {}

    def register(
        self,
        provider_id: str,
        items: Iterable[RemoteItem] = (),
        *,
        name: str | None = None,
        enabled: bool = True,
        authenticated: bool = True,
    ) -> None:
        self._items[provider_id] = list(items)
        self._names[provider_id] = name or provider_id
        self._statuses[provider_id] = ProviderStatus(
            provider_id=provider_id, enabled=enabled, authenticated=authenticated
        )

    def set_items(self, provider_id: str, items: Iterable[RemoteItem]) -> None:
        self._items[provider_id] = list(items)

    def fail_with(self, provider_id: str, *errors: Exception) -> None:
        """Raise ``errors`` from the next fetches, one per call, before serving items."""
        self._failures.setdefault(provider_id, deque()).extend(errors)

    def list_providers(self) -> list[str]:
        return list(self._statuses)

    def get_status(self, provider_id: str) -> ProviderStatus | None:
        return self._statuses.get(provider_id)

    def display_name(self, provider_id: str) -> str:
        return self._names.get(provider_id, provider_id)

    async def fetch_items(self, provider_id: str) -> list[RemoteItem]:
        self.fetch_calls[provider_id] = self.fetch_calls.get(provider_id, 0) + 1
        pending = self._failures.get(provider_id)
        if pending:
            raise pending.popleft()
        return list(self._items.get(provider_id, []))


__all__ = [
    "BookmarkNotFoundError",
    "InMemoryBookmarkStore",
    "InMemoryCheckpointStore",
    "InMemorySettingsStore",
    "RecordingNotificationSink",
    "StaticProviderGateway",
]
