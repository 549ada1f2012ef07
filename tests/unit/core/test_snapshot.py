"""Tests for cache snapshots and the snapshot store."""

import logging

import pytest

from cachescope.core.keys import PriKey
from cachescope.core.snapshot import CacheSnapshot, CacheSnapshotStore

K1 = PriKey("project", "p1")
K2 = PriKey("project", "p2")


class TestCacheSnapshot:
    """Test immutable snapshot behaviour."""

    def test_mapping_protocol(self) -> None:
        """Snapshots behave like read-only mappings."""
        snapshot = CacheSnapshot(("project",), {K1: {"key": K1}})
        assert len(snapshot) == 1
        assert snapshot[K1] == {"key": K1}
        assert list(snapshot) == [K1]
        assert snapshot.key_types == ("project",)

    def test_constructor_copies_items(self) -> None:
        """Later changes to the source dict do not leak in."""
        items = {K1: {"key": K1}}
        snapshot = CacheSnapshot(("project",), items)
        items[K2] = {"key": K2}
        assert K2 not in snapshot

    def test_with_item_returns_new_snapshot(self) -> None:
        """with_item leaves the original untouched."""
        snapshot = CacheSnapshot(("project",))
        updated = snapshot.with_item(K1, {"key": K1})
        assert updated is not snapshot
        assert K1 in updated
        assert K1 not in snapshot

    def test_with_items_uses_item_keys(self) -> None:
        """Items are placed under their own keys; keyless items are skipped."""
        snapshot = CacheSnapshot(("project",)).with_items([{"key": K1}, {"name": "x"}, None])
        assert list(snapshot) == [K1]

    def test_without(self) -> None:
        """without drops one key in a new snapshot."""
        snapshot = CacheSnapshot(("project",), {K1: {"key": K1}, K2: {"key": K2}})
        assert list(snapshot.without(K1)) == [K2]
        assert len(snapshot) == 2


class TestCacheSnapshotStore:
    """Test snapshot replacement."""

    @pytest.fixture
    def store(self) -> CacheSnapshotStore:
        """Create an empty store."""
        return CacheSnapshotStore(("project",))

    def test_replace_publishes_a_copy(self, store: CacheSnapshotStore) -> None:
        """The stored snapshot equals the given one but is a distinct object."""
        before = store.current
        incoming = CacheSnapshot(("project",), {K1: {"key": K1}})
        published = store.replace(incoming)
        assert store.current is published
        assert published is not incoming
        assert published is not before
        assert published == incoming

    def test_revision_counts_replacements(self, store: CacheSnapshotStore) -> None:
        """Every replace bumps the revision."""
        assert store.revision == 0
        store.replace(CacheSnapshot(("project",)))
        store.replace(CacheSnapshot(("project",)))
        assert store.revision == 2

    def test_identity_changes_even_for_equal_content(self, store: CacheSnapshotStore) -> None:
        """Replacing with equal content still yields a new object."""
        first = store.replace(CacheSnapshot(("project",), {K1: {"key": K1}}))
        second = store.replace(first)
        assert second is not first

    def test_watch_and_unwatch(self, store: CacheSnapshotStore) -> None:
        """Listeners see each published snapshot until unwatched."""
        seen: list[CacheSnapshot] = []
        unwatch = store.watch(seen.append)
        published = store.replace(CacheSnapshot(("project",)))
        unwatch()
        store.replace(CacheSnapshot(("project",)))
        assert seen == [published]
        assert seen[0] is published

    def test_failing_listener_is_logged(
        self, store: CacheSnapshotStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failing listener does not stop the others."""
        seen: list[CacheSnapshot] = []

        def broken(snapshot: CacheSnapshot) -> None:
            raise RuntimeError("boom")

        store.watch(broken)
        store.watch(seen.append)
        with caplog.at_level(logging.ERROR):
            store.replace(CacheSnapshot(("project",)))
        assert len(seen) == 1
        assert "Error in snapshot listener" in caplog.text
