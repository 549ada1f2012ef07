"""Tests for the in-memory cache source."""

import pytest

from cachescope.core.keys import ComKey, LocKey, PriKey
from cachescope.events.schemas import CacheEvent, EventKind, SubscriptionOptions
from cachescope.source.memory import InMemoryCacheSource, ItemNotFound, UnknownOperation

P1 = (LocKey("project", "p1"),)
T1 = ComKey("task", "t1", P1)
T2 = ComKey("task", "t2", P1)


class TestInMemoryCacheSource:
    """Test the reference cache source."""

    async def test_all_under_location(self, task_source: InMemoryCacheSource) -> None:
        """all() returns items under the chain and caches them."""
        snapshot, items = await task_source.all(None, P1)
        assert {item["key"] for item in items} == {T1, T2}
        assert set(snapshot) == {T1, T2}

    async def test_all_with_query(self, task_source: InMemoryCacheSource) -> None:
        """Queries filter on field equality."""
        _, items = await task_source.all({"name": "a"}, ())
        assert len(items) == 2
        assert all(item["name"] == "a" for item in items)

    async def test_snapshots_are_fresh_objects(self, task_source: InMemoryCacheSource) -> None:
        """Every call returns a new snapshot."""
        first, _ = await task_source.all(None, P1)
        second, _ = await task_source.all(None, P1)
        assert first is not second

    async def test_create_places_item_under_chain(
        self, task_source: InMemoryCacheSource
    ) -> None:
        """A created contained item gets a ComKey with the given chain."""
        snapshot, item = await task_source.create({"id": "t9", "name": "new"}, P1)
        assert item["key"] == ComKey("task", "t9", P1)
        assert snapshot[item["key"]]["name"] == "new"

    async def test_retrieve_cache_hit_returns_no_snapshot(
        self, task_source: InMemoryCacheSource
    ) -> None:
        """The first retrieve fetches, the second is served from cache."""
        snapshot, item = await task_source.retrieve(T1)
        assert snapshot is not None
        assert item is not None
        cached_snapshot, cached = await task_source.retrieve(T1)
        assert cached_snapshot is None
        assert cached == item

    async def test_retrieve_missing(self, task_source: InMemoryCacheSource) -> None:
        """A missing item yields a snapshot and no item."""
        snapshot, item = await task_source.retrieve(ComKey("task", "nope", P1))
        assert snapshot is not None
        assert item is None

    async def test_update_missing_raises(self, task_source: InMemoryCacheSource) -> None:
        """Updating an unknown key raises ItemNotFound with error info."""
        with pytest.raises(ItemNotFound) as exc_info:
            await task_source.update(ComKey("task", "nope", P1), {"name": "x"})
        assert exc_info.value.error_info["code"] == "NOT_FOUND"

    async def test_update_does_not_mutate_previous_item(
        self, task_source: InMemoryCacheSource
    ) -> None:
        """Updates replace the stored item instead of mutating it."""
        _, before = await task_source.get(T1)
        _, after = await task_source.update(T1, {"name": "z"})
        assert before is not None
        assert before["name"] == "a"
        assert after["name"] == "z"

    async def test_action(self, task_source: InMemoryCacheSource) -> None:
        """Registered actions transform the item."""
        snapshot, item = await task_source.action(T1, "complete", {})
        assert item["done"] is True
        assert snapshot[T1]["done"] is True

    async def test_unknown_action(self, task_source: InMemoryCacheSource) -> None:
        """Unregistered names raise UnknownOperation."""
        with pytest.raises(UnknownOperation):
            await task_source.action(T1, "explode", {})

    async def test_all_action(self, task_source: InMemoryCacheSource) -> None:
        """Collection actions update every returned item."""
        _, items = await task_source.all_action("completeAll", {}, P1)
        assert len(items) == 2
        assert all(item["done"] for item in items)

    async def test_find_and_find_one(self, task_source: InMemoryCacheSource) -> None:
        """Finders run a predicate over the items under the chain."""
        _, found = await task_source.find("byName", {"name": "a"}, P1)
        assert [item["key"] for item in found] == [T1]
        _, first = await task_source.find_one("byName", {"name": "b"}, P1)
        assert first is not None
        assert first["key"] == T2
        _, none = await task_source.find_one("byName", {"name": "zzz"}, P1)
        assert none is None

    async def test_facets(self, task_source: InMemoryCacheSource) -> None:
        """Item and collection facets compute read-only results."""
        _, summary = await task_source.facet(T1, "summary", {"x": 1})
        assert summary == {"name": "a", "x": 1}
        _, count = await task_source.all_facet("count", {}, P1)
        assert count == {"count": 2}

    async def test_remove(self, task_source: InMemoryCacheSource) -> None:
        """Removal returns only the snapshot."""
        await task_source.get(T1)
        snapshot = await task_source.remove(T1)
        assert T1 not in snapshot
        with pytest.raises(ItemNotFound):
            await task_source.remove(T1)

    async def test_set(self, task_source: InMemoryCacheSource) -> None:
        """set stores the item under the given key."""
        snapshot, item = await task_source.set(T1, {"name": "replaced"})
        assert item == {"name": "replaced", "key": T1}
        assert snapshot[T1] == item

    async def test_clear_empties_cache_but_keeps_store(
        self, task_source: InMemoryCacheSource
    ) -> None:
        """After clear() nothing is cached, yet items can be fetched again."""
        await task_source.all(None, P1)
        await task_source.clear()
        assert len(task_source.snapshot()) == 0
        _, item = await task_source.get(T1)
        assert item is not None

    async def test_calls_are_recorded(self, task_source: InMemoryCacheSource) -> None:
        """Operation names are logged in call order."""
        await task_source.get(T1)
        await task_source.all(None, P1)
        assert task_source.calls == ["get", "all"]

    async def test_events_respect_filters(self, task_source: InMemoryCacheSource) -> None:
        """Subscribers only see the kinds and keys they asked for."""
        received: list[CacheEvent] = []
        options = SubscriptionOptions(event_types={EventKind.ITEM_UPDATED}, keys=(T1,))
        task_source.subscribe(received.append, options)

        await task_source.update(T2, {"name": "x"})
        await task_source.update(T1, {"name": "y"})
        await task_source.get(T1)

        assert [event.key for event in received] == [T1]
        assert received[0].item is not None
        assert received[0].item["name"] == "y"

    async def test_unsubscribe(self, task_source: InMemoryCacheSource) -> None:
        """Released listeners receive nothing."""
        received: list[CacheEvent] = []
        subscription = task_source.subscribe(received.append, SubscriptionOptions())
        subscription.unsubscribe()
        await task_source.invalidate()
        assert received == []
        assert task_source.subscriber_count == 0

    def test_seed_requires_key(self) -> None:
        """Seeding requires keys."""
        source = InMemoryCacheSource(("project",))
        with pytest.raises(ValueError):
            source.seed({"name": "no key"})

    async def test_primary_create(self, project_source: InMemoryCacheSource) -> None:
        """Primary sources create PriKeys."""
        _, item = await project_source.create({"id": "p3", "name": "Mercury"}, ())
        assert item["key"] == PriKey("project", "p3")
