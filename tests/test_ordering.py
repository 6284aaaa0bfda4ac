"""Tests for bookmark ordering and folder title statistics."""

from __future__ import annotations

from bookmark_sync.sync.models import FolderTitleOptions, SortOrder
from bookmark_sync.sync.ordering import format_folder_title, sort_items, strip_folder_stats
from tests.conftest import at, make_item


def test_alphabetical_sort_ignores_case() -> None:
    items = [make_item("1", "beta"), make_item("2", "Alpha"), make_item("3", "gamma")]

    ordered = sort_items(items, SortOrder.ALPHABETICAL)

    assert [item.title for item in ordered] == ["Alpha", "beta", "gamma"]


def test_created_sort_is_oldest_first_with_undated_last() -> None:
    items = [
        make_item("new", created_at=at(30)),
        make_item("undated"),
        make_item("old", created_at=at(0)),
    ]

    ordered = sort_items(items, "created")

    assert [item.id for item in ordered] == ["old", "new", "undated"]


def test_created_sort_mixes_naive_and_aware_timestamps() -> None:
    naive_early = at(0).replace(tzinfo=None)
    items = [
        make_item("aware", created_at=at(30)),
        make_item("naive", created_at=naive_early),
    ]

    ordered = sort_items(items, SortOrder.CREATED)

    assert [item.id for item in ordered] == ["naive", "aware"]


def test_updated_sort_is_newest_first_with_undated_last() -> None:
    items = [
        make_item("undated"),
        make_item("stale", updated_at=at(0)),
        make_item("fresh", updated_at=at(60)),
    ]

    ordered = sort_items(items, SortOrder.UPDATED)

    assert [item.id for item in ordered] == ["fresh", "stale", "undated"]


def test_strip_folder_stats() -> None:
    assert strip_folder_stats("Pull Requests (12 total • 3 to review)") == "Pull Requests"
    assert strip_folder_stats("Issues (empty)") == "Issues"
    assert strip_folder_stats("Plain") == "Plain"


def test_title_unchanged_when_disabled() -> None:
    assert format_folder_title("Issues", [make_item("1")]) == "Issues"


def test_title_for_empty_folder() -> None:
    options = FolderTitleOptions(enabled=True)

    assert format_folder_title("Issues", [], options) == "Issues (empty)"


def test_title_with_total_and_review_count() -> None:
    options = FolderTitleOptions(enabled=True)
    items = [
        make_item("1", metadata={"review_requested": True}),
        make_item("2"),
        make_item("3", metadata={"review_requested": True}),
    ]

    assert format_folder_title("Pull Requests", items, options) == (
        "Pull Requests (3 total • 2 to review)"
    )


def test_title_omits_zero_review_count() -> None:
    options = FolderTitleOptions(enabled=True)

    assert format_folder_title("Issues", [make_item("1")], options) == "Issues (1 total)"


def test_title_without_any_parts_is_base_name() -> None:
    options = FolderTitleOptions(enabled=True, include_total=False, include_review_count=False)

    assert format_folder_title("Issues", [make_item("1")], options) == "Issues"
