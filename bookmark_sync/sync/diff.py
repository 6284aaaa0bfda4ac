"""Diff calculation between a folder's bookmarks and a fresh remote feed."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bookmark_sync.sync.models import SyncDiff, UpdateItem

if TYPE_CHECKING:
    from collections.abc import Iterable

    from bookmark_sync.sync.models import LocalBookmarkRecord, RemoteItem


def compute_diff(
    local_bookmarks: Iterable[LocalBookmarkRecord], remote_items: Iterable[RemoteItem]
) -> SyncDiff:
    """Compute the operations needed to make the local set match the remote set.

    Both sides are keyed by URL. A remote item whose URL changed is reported as
    one delete plus one add; only title changes produce updates. Duplicate URLs
    keep their first occurrence so no URL appears twice in the result.
    """
    local_by_url: dict[str, LocalBookmarkRecord] = {}
    for bookmark in local_bookmarks:
        local_by_url.setdefault(bookmark.url, bookmark)

    remote_by_url: dict[str, RemoteItem] = {}
    for item in remote_items:
        remote_by_url.setdefault(item.url, item)

    to_add: list[RemoteItem] = []
    to_update: list[UpdateItem] = []
    for url, item in remote_by_url.items():
        existing = local_by_url.get(url)
        if existing is None:
            to_add.append(item)
        elif existing.title != item.title:
            to_update.append(
                UpdateItem(bookmark_id=existing.bookmark_id, old_item=existing, new_item=item)
            )

    to_delete = [
        bookmark.bookmark_id for url, bookmark in local_by_url.items() if url not in remote_by_url
    ]

    return SyncDiff(to_add=to_add, to_update=to_update, to_delete=to_delete)
