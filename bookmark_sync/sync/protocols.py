"""Protocol definitions (ports) for the sync engine.

Keeping these as Protocols isolates the reconciliation loop from concrete
provider clients, the bookmark API and the persistence layer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from bookmark_sync.sync.models import (
        BookmarkChange,
        BookmarkFolder,
        ItemCheckpoint,
        LocalBookmarkRecord,
        Notification,
        NotificationSettings,
        ProviderConfig,
        ProviderStatus,
        RemoteItem,
        SortOrder,
    )


class ProviderGateway(Protocol):
    def list_providers(self) -> list[str]: ...

    def get_status(self, provider_id: str) -> ProviderStatus | None: ...

    def display_name(self, provider_id: str) -> str: ...

    async def fetch_items(self, provider_id: str) -> list[RemoteItem]: ...


class BookmarkStore(Protocol):
    async def get_folder(self, folder_id: str) -> BookmarkFolder | None: ...

    async def get_folder_contents(self, folder_id: str) -> list[LocalBookmarkRecord]: ...

    async def batch_create(
        self, folder_id: str, items: Sequence[RemoteItem], sort_order: SortOrder
    ) -> list[str]: ...

    async def batch_update(self, updates: Sequence[BookmarkChange]) -> None: ...

    async def batch_delete(self, bookmark_ids: Sequence[str]) -> None: ...

    async def reorder_folder(
        self, folder_id: str, items: Sequence[RemoteItem], sort_order: SortOrder
    ) -> None: ...

    async def update_bookmark(self, bookmark_id: str, *, title: str) -> None: ...


class SettingsStore(Protocol):
    async def get_notification_settings(self) -> NotificationSettings: ...

    async def get_provider_config(self, provider_id: str) -> ProviderConfig | None: ...


class CheckpointStore(Protocol):
    async def get_last_sync(self, provider_id: str) -> datetime | None: ...

    async def set_last_sync(self, provider_id: str, timestamp: datetime) -> None: ...

    async def get_item_checkpoints(self, provider_id: str) -> dict[str, ItemCheckpoint]: ...

    async def save_item_checkpoints(
        self, provider_id: str, checkpoints: dict[str, ItemCheckpoint]
    ) -> None:
        """Upsert ``checkpoints`` into the provider's map, keyed by item id."""
        ...


class NotificationSink(Protocol):
    async def notify(self, notification: Notification) -> None: ...
