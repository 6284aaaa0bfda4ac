"""Pydantic models shared by the reconciliation engine."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RemoteItem(BaseModel):
    """Normalized work item as returned by a provider gateway.

    Identity for diffing is the URL; ``id`` is only used to key conflicts and
    per-item checkpoints.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    provider_id: str = Field(alias="providerId")
    title: str
    url: str
    description: str | None = None
    favicon: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    last_modified: datetime | None = Field(default=None, alias="lastModified")
    metadata: dict[str, Any] = Field(default_factory=dict)


class LocalBookmarkRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    bookmark_id: str = Field(alias="bookmarkId")
    url: str
    title: str
    modified_at: datetime | None = Field(default=None, alias="modifiedAt")


class UpdateItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    bookmark_id: str
    old_item: LocalBookmarkRecord
    new_item: RemoteItem


class SyncDiff(BaseModel):
    """Create/update/delete operations that converge a folder with a remote feed."""

    model_config = ConfigDict(frozen=True)

    to_add: list[RemoteItem] = Field(default_factory=list)
    to_update: list[UpdateItem] = Field(default_factory=list)
    to_delete: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_update or self.to_delete)

    @property
    def total_changes(self) -> int:
        return len(self.to_add) + len(self.to_update) + len(self.to_delete)


class SortOrder(StrEnum):
    ALPHABETICAL = "alphabetical"
    CREATED = "created"
    UPDATED = "updated"


class FolderTitleOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    include_total: bool = True
    include_review_count: bool = True


class ProviderConfig(BaseModel):
    """Per-source settings read from the settings store."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = True
    folder_id: str | None = Field(default=None, alias="folderId")
    sort_order: SortOrder = Field(default=SortOrder.ALPHABETICAL, alias="sortOrder")
    filters: dict[str, Any] = Field(default_factory=dict)
    folder_title: FolderTitleOptions = Field(
        default_factory=FolderTitleOptions, alias="folderTitle"
    )


class NotificationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enable_notifications: bool = True
    notify_on_success: bool = False
    notify_on_error: bool = True


class NotificationType(StrEnum):
    SYNC_SUCCESS = "sync_success"
    SYNC_ERROR = "sync_error"
    SYNC_PARTIAL = "sync_partial"
    CONFLICT_DETECTED = "conflict_detected"
    RATE_LIMIT = "rate_limit"
    AUTH_REQUIRED = "auth_required"


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: NotificationType
    title: str
    message: str
    provider_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class ProviderStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str
    enabled: bool = True
    authenticated: bool = False


class ItemCheckpoint(BaseModel):
    """Bookmark linkage for one remote item, persisted across cycles."""

    item_id: str
    bookmark_id: str
    provider_id: str
    title: str
    last_updated: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_modified: datetime | None = None
    # remote title passed over in favour of the kept local title
    declined_remote_title: str | None = None


class SyncResult(BaseModel):
    """Result of one source's sync cycle."""

    provider_id: str
    success: bool
    items_added: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    skipped_conflicts: int = 0
    conflict_ids: list[str] = Field(default_factory=list)
    error: str | None = None
    duration: float = 0.0
    correlation_id: str | None = None


class SyncRunSummary(BaseModel):
    """Result of a ``sync_all`` run across every eligible source."""

    results: list[SyncResult] = Field(default_factory=list)
    success_count: int = 0
    duration: float = 0.0
    correlation_id: str | None = None

    @property
    def failed(self) -> list[SyncResult]:
        return [result for result in self.results if not result.success]


class ConflictType(StrEnum):
    METADATA_CONFLICT = "metadata_conflict"
    URL_MISMATCH = "url_mismatch"


class ConflictStrategy(StrEnum):
    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"
    NEWEST_WINS = "newest_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ManualAction(StrEnum):
    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    KEEP_BOTH = "keep_both"
    DELETE_BOTH = "delete_both"
    CUSTOM = "custom"


class Conflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: ConflictType
    local: RemoteItem
    remote: RemoteItem
    provider_id: str
    created_at: datetime


class ConflictResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    conflict: Conflict
    strategy: ConflictStrategy
    resolved: RemoteItem | None = None
    requires_user_confirmation: bool = False


class ConflictStats(BaseModel):
    total: int = 0
    by_provider: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)


class BookmarkFolder(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str


class BookmarkChange(BaseModel):
    """Title change for one existing bookmark."""

    model_config = ConfigDict(frozen=True)

    bookmark_id: str
    title: str
