"""Tests for diff calculation between folder contents and a remote feed."""

from __future__ import annotations

from bookmark_sync.sync.diff import compute_diff
from bookmark_sync.sync.models import LocalBookmarkRecord
from tests.conftest import make_item


def _local(bookmark_id: str, url: str, title: str) -> LocalBookmarkRecord:
    return LocalBookmarkRecord(bookmark_id=bookmark_id, url=url, title=title)


def test_empty_sides_produce_empty_diff() -> None:
    diff = compute_diff([], [])

    assert diff.is_empty
    assert diff.total_changes == 0


def test_new_remote_items_are_added() -> None:
    items = [make_item("1"), make_item("2")]

    diff = compute_diff([], items)

    assert [item.id for item in diff.to_add] == ["1", "2"]
    assert diff.to_update == []
    assert diff.to_delete == []


def test_missing_remote_items_are_deleted() -> None:
    local = [_local("b1", "https://example.com/gone", "Gone")]

    diff = compute_diff(local, [])

    assert diff.to_delete == ["b1"]
    assert diff.to_add == []


def test_title_change_is_an_update() -> None:
    local = [_local("b1", "https://example.com/1", "Old title")]
    remote = [make_item("1", "New title")]

    diff = compute_diff(local, remote)

    assert len(diff.to_update) == 1
    update = diff.to_update[0]
    assert update.bookmark_id == "b1"
    assert update.old_item.title == "Old title"
    assert update.new_item.title == "New title"
    assert diff.to_add == []
    assert diff.to_delete == []


def test_identical_sets_need_no_changes() -> None:
    local = [_local("b1", "https://example.com/1", "Item 1")]

    diff = compute_diff(local, [make_item("1")])

    assert diff.is_empty


def test_url_change_is_delete_plus_add() -> None:
    local = [_local("b1", "https://example.com/old", "Same")]
    remote = [make_item("1", "Same", url="https://example.com/new")]

    diff = compute_diff(local, remote)

    assert diff.to_delete == ["b1"]
    assert [item.url for item in diff.to_add] == ["https://example.com/new"]
    assert diff.to_update == []


def test_mixed_changes() -> None:
    local = [
        _local("b1", "https://example.com/1", "Item 1"),
        _local("b2", "https://example.com/2", "Stale"),
        _local("b3", "https://example.com/3", "Item 3"),
    ]
    remote = [make_item("1"), make_item("2"), make_item("4")]

    diff = compute_diff(local, remote)

    assert [item.id for item in diff.to_add] == ["4"]
    assert [update.bookmark_id for update in diff.to_update] == ["b2"]
    assert diff.to_delete == ["b3"]
    assert diff.total_changes == 3


def test_unchanged_overlap_is_left_alone() -> None:
    local = [
        _local("bA", "https://example.com/A", "Item A"),
        _local("bB", "https://example.com/B", "Item B"),
    ]
    remote = [make_item("B"), make_item("C")]

    diff = compute_diff(local, remote)

    assert [item.id for item in diff.to_add] == ["C"]
    assert diff.to_delete == ["bA"]
    assert diff.to_update == []


def test_diff_is_repeatable() -> None:
    local = [_local("b1", "https://example.com/1", "Old")]
    remote = [make_item("1", "New"), make_item("2")]

    assert compute_diff(local, remote) == compute_diff(local, remote)


def test_duplicate_urls_keep_first_occurrence() -> None:
    local = [
        _local("b1", "https://example.com/1", "Item 1"),
        _local("b2", "https://example.com/1", "Duplicate"),
    ]
    remote = [
        make_item("1"),
        make_item("1-dup", "Other", url="https://example.com/1"),
        make_item("2"),
        make_item("2-dup", "Other", url="https://example.com/2"),
    ]

    diff = compute_diff(local, remote)

    assert [item.id for item in diff.to_add] == ["2"]
    assert diff.to_update == []
    assert diff.to_delete == []
