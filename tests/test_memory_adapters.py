"""Tests for the in-memory bookmark store and provider gateway."""

from __future__ import annotations

import unittest

import pytest

from bookmark_sync.adapters.memory import (
    BookmarkNotFoundError,
    InMemoryBookmarkStore,
    StaticProviderGateway,
)
from bookmark_sync.sync.errors import NetworkError
from bookmark_sync.sync.models import BookmarkChange, SortOrder
from tests.conftest import make_item


class TestInMemoryBookmarkStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = InMemoryBookmarkStore()
        self.folder_id = self.store.add_folder("Issues")

    async def test_batch_create_returns_ids_in_input_order(self):
        items = [make_item("z", "Zulu"), make_item("a", "Alpha")]

        ids = await self.store.batch_create(self.folder_id, items, SortOrder.ALPHABETICAL)

        contents = await self.store.get_folder_contents(self.folder_id)
        by_id = {bookmark.bookmark_id: bookmark.title for bookmark in contents}
        assert [by_id[bookmark_id] for bookmark_id in ids] == ["Zulu", "Alpha"]
        assert self.store.titles(self.folder_id) == ["Alpha", "Zulu"]

    async def test_batch_update_and_delete(self):
        first = self.store.add_bookmark(self.folder_id, "https://example.com/1", "One")
        second = self.store.add_bookmark(self.folder_id, "https://example.com/2", "Two")

        await self.store.batch_update([BookmarkChange(bookmark_id=first, title="Uno")])
        await self.store.batch_delete([second, "missing"])

        assert self.store.titles(self.folder_id) == ["Uno"]

    async def test_reorder_keeps_unmatched_bookmarks_last(self):
        self.store.add_bookmark(self.folder_id, "https://example.com/manual", "Manual")
        self.store.add_bookmark(self.folder_id, "https://example.com/b", "Bravo")
        self.store.add_bookmark(self.folder_id, "https://example.com/a", "Alpha")

        await self.store.reorder_folder(
            self.folder_id,
            [make_item("b", "Bravo"), make_item("a", "Alpha")],
            SortOrder.ALPHABETICAL,
        )

        assert self.store.titles(self.folder_id) == ["Alpha", "Bravo", "Manual"]

    async def test_reorder_keeps_bookmarks_sharing_a_url(self):
        self.store.add_bookmark(self.folder_id, "https://example.com/1", "Item 1 copy")
        self.store.add_bookmark(self.folder_id, "https://example.com/1", "Item 1")

        await self.store.reorder_folder(self.folder_id, [make_item("1")], SortOrder.ALPHABETICAL)

        assert self.store.titles(self.folder_id) == ["Item 1 copy", "Item 1"]
        assert len(await self.store.get_folder_contents(self.folder_id)) == 2

    async def test_unknown_ids_raise(self):
        with pytest.raises(BookmarkNotFoundError):
            await self.store.update_bookmark("missing", title="x")
        with pytest.raises(BookmarkNotFoundError):
            await self.store.get_folder_contents("missing")


class TestStaticProviderGateway(unittest.IsolatedAsyncioTestCase):
    async def test_scripted_failures_precede_items(self):
        gateway = StaticProviderGateway()
        gateway.register("github", [make_item("1")], name="GitHub")
        gateway.fail_with("github", NetworkError("down"))

        with pytest.raises(NetworkError):
            await gateway.fetch_items("github")
        items = await gateway.fetch_items("github")

        assert [item.id for item in items] == ["1"]
        assert gateway.fetch_calls == {"github": 2}
        assert gateway.display_name("github") == "GitHub"
        assert gateway.display_name("unknown") == "unknown"
        assert gateway.get_status("unknown") is None
