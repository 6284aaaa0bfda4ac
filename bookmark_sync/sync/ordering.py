"""Bookmark ordering and dynamic folder titles."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from bookmark_sync.core.time_utils import ensure_utc
from bookmark_sync.sync.models import FolderTitleOptions, SortOrder

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from bookmark_sync.sync.models import RemoteItem

_TRAILING_STATS = re.compile(r"\s*\(.*\)\s*$")
TITLE_SEPARATOR = " • "
REVIEW_FLAG = "review_requested"


def _timestamp(value: datetime | None) -> float:
    # naive values are read as UTC so mixed inputs stay comparable
    aware = ensure_utc(value)
    return aware.timestamp() if aware else 0.0


def sort_items(items: Iterable[RemoteItem], sort_order: SortOrder | str) -> list[RemoteItem]:
    """Return ``items`` in folder order.

    ``alphabetical`` ignores case, ``created`` puts the oldest first and
    ``updated`` the most recently updated first; items without the relevant
    timestamp go last. The sort is stable.
    """
    sort_order = SortOrder(sort_order)
    items = list(items)

    if sort_order is SortOrder.ALPHABETICAL:
        return sorted(items, key=lambda item: item.title.casefold())

    if sort_order is SortOrder.CREATED:
        return sorted(
            items,
            key=lambda item: (item.created_at is None, _timestamp(item.created_at)),
        )

    dated = [item for item in items if item.updated_at is not None]
    undated = [item for item in items if item.updated_at is None]
    dated.sort(key=lambda item: _timestamp(item.updated_at), reverse=True)
    return dated + undated


def strip_folder_stats(title: str) -> str:
    """Remove a trailing ``"(...)"`` statistics suffix from a folder title."""
    return _TRAILING_STATS.sub("", title).strip()


def format_folder_title(
    base_name: str, items: list[RemoteItem], options: FolderTitleOptions | None = None
) -> str:
    """Build a folder title such as ``"Pull Requests (12 total • 3 to review)"``."""
    options = options or FolderTitleOptions()
    if not options.enabled:
        return base_name
    if not items:
        return f"{base_name} (empty)"

    parts: list[str] = []
    if options.include_total:
        parts.append(f"{len(items)} total")
    if options.include_review_count:
        review_count = sum(1 for item in items if item.metadata.get(REVIEW_FLAG))
        if review_count:
            parts.append(f"{review_count} to review")

    if not parts:
        return base_name
    return f"{base_name} ({TITLE_SEPARATOR.join(parts)})"
