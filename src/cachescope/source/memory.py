"""In-memory cache source.

Dict-backed reference implementation of the CacheSource contract. Items live
in a backing store (the stand-in for the remote source of truth); the keys
that have been read or written form the cache, and every snapshot is a view
of the cached keys.

Finders, actions and facets are registered by name:

    source = InMemoryCacheSource(("task", "project"))
    source.register_finder("byName", lambda item, params: item["name"] == params["name"])
    source.register_action("activate", lambda item, body: {**item, "active": True})
    source.register_facet("summary", lambda item, params: {"name": item["name"]})

Registered callables may be sync or async.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any
from uuid import uuid4

from cachescope.core.keys import (
    ComKey,
    Item,
    LocationChain,
    ParameterBag,
    PriKey,
    Query,
    ScopeKey,
    abbrev_key,
    chain_startswith,
    key_of,
)
from cachescope.core.snapshot import CacheSnapshot
from cachescope.events.dispatch import DebounceTimer, dispatch
from cachescope.events.schemas import CacheEvent, EventHandler, EventKind, SubscriptionOptions
from cachescope.events.subscriber import Subscription
from cachescope.source.base import CacheSource

logger = logging.getLogger(__name__)


class ItemNotFound(LookupError):
    """No item exists for a key."""

    def __init__(self, key: ScopeKey):
        self.key = key
        super().__init__(f"Item not found: {abbrev_key(key)}")
        self.error_info = {
            "code": "NOT_FOUND",
            "message": str(self),
            "context": {"key": abbrev_key(key)},
        }


class UnknownOperation(LookupError):
    """No finder, action or facet is registered under a name."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"No {kind} registered as '{name}'")


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _matches_query(item: Item, query: Query | None) -> bool:
    if not query:
        return True
    return all(item.get(field) == value for field, value in query.items())


class _Listener:
    __slots__ = ("handler", "options", "timer", "last_event")

    def __init__(self, handler: EventHandler, options: SubscriptionOptions, deliver: Any):
        self.handler = handler
        self.options = options
        self.last_event: CacheEvent | None = None
        self.timer = DebounceTimer(options.debounce_ms, lambda: deliver(self))


class InMemoryCacheSource(CacheSource):
    """Dict-backed cache source emitting change events to subscribers."""

    def __init__(
        self,
        key_types: Sequence[str],
        items: Iterable[Item] | None = None,
        *,
        name: str | None = None,
        latency_ms: int = 0,
    ):
        if not key_types:
            raise ValueError("key_types must name at least the item type")
        self._key_types = tuple(key_types)
        self.name = name or self._key_types[0]
        self.latency_ms = latency_ms
        self._store: dict[ScopeKey, Item] = {}
        self._cached: set[ScopeKey] = set()
        self._finders: dict[str, Callable[..., Any]] = {}
        self._actions: dict[str, Callable[..., Any]] = {}
        self._all_actions: dict[str, Callable[..., Any]] = {}
        self._facets: dict[str, Callable[..., Any]] = {}
        self._all_facets: dict[str, Callable[..., Any]] = {}
        self._listeners: list[_Listener] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        # Operation names in call order
        self.calls: list[str] = []

        for item in items or ():
            self.seed(item)

    @property
    def key_types(self) -> tuple[str, ...]:
        return self._key_types

    # Registration

    def seed(self, item: Item) -> None:
        """Put an item in the backing store without caching it."""
        key = key_of(item)
        if key is None:
            raise ValueError("Seeded items must carry a key")
        self._store[key] = dict(item)

    def register_finder(self, name: str, predicate: Callable[[Item, ParameterBag], Any]) -> None:
        self._finders[name] = predicate

    def register_action(self, name: str, fn: Callable[[Item, ParameterBag], Any]) -> None:
        self._actions[name] = fn

    def register_all_action(
        self, name: str, fn: Callable[[list[Item], ParameterBag], Any]
    ) -> None:
        self._all_actions[name] = fn

    def register_facet(self, name: str, fn: Callable[[Item, ParameterBag], Any]) -> None:
        self._facets[name] = fn

    def register_all_facet(self, name: str, fn: Callable[[list[Item], ParameterBag], Any]) -> None:
        self._all_facets[name] = fn

    # Contract

    async def all(
        self, query: Query | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        await self._roundtrip("all")
        items = [item for item in self._under(locations) if _matches_query(item, query)]
        self._cache(items)
        self._emit(
            CacheEvent(
                EventKind.ITEMS_QUERIED,
                items=tuple(items),
                query=query,
                locations=tuple(locations),
                source=self.name,
            )
        )
        return self.snapshot(), items

    async def one(
        self, query: Query | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item | None]:
        await self._roundtrip("one")
        for item in self._under(locations):
            if _matches_query(item, query):
                self._cache([item])
                return self.snapshot(), item
        return self.snapshot(), None

    async def create(
        self, properties: Item, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item]:
        await self._roundtrip("create")
        pk = properties.get("id") or str(uuid4())
        key: ScopeKey
        if len(self._key_types) > 1:
            key = ComKey(self._key_types[0], pk, tuple(locations))
        else:
            key = PriKey(self._key_types[0], pk)
        item = {**properties, "key": key}
        self._store[key] = item
        self._cached.add(key)
        self._emit(CacheEvent(EventKind.ITEM_CREATED, key=key, item=item, source=self.name))
        return self.snapshot(), item

    async def get(self, key: ScopeKey) -> tuple[CacheSnapshot, Item | None]:
        await self._roundtrip("get")
        item = self._store.get(key)
        if item is not None:
            self._cached.add(key)
            self._emit(CacheEvent(EventKind.ITEM_RETRIEVED, key=key, item=item, source=self.name))
        return self.snapshot(), item

    async def remove(self, key: ScopeKey) -> CacheSnapshot:
        await self._roundtrip("remove")
        self._require(key)
        del self._store[key]
        self._cached.discard(key)
        self._emit(CacheEvent(EventKind.ITEM_REMOVED, key=key, source=self.name))
        return self.snapshot()

    async def retrieve(self, key: ScopeKey) -> tuple[CacheSnapshot | None, Item | None]:
        await self._roundtrip("retrieve")
        if key in self._cached and key in self._store:
            return None, self._store[key]
        item = self._store.get(key)
        if item is None:
            return self.snapshot(), None
        self._cached.add(key)
        self._emit(CacheEvent(EventKind.ITEM_RETRIEVED, key=key, item=item, source=self.name))
        return self.snapshot(), item

    async def update(self, key: ScopeKey, properties: Item) -> tuple[CacheSnapshot, Item]:
        await self._roundtrip("update")
        current = self._require(key)
        item = {**current, **properties, "key": key}
        return self._replace(key, item, EventKind.ITEM_UPDATED), item

    async def action(
        self, key: ScopeKey, name: str, body: ParameterBag | None = None
    ) -> tuple[CacheSnapshot, Item]:
        await self._roundtrip("action")
        fn = self._lookup(self._actions, "action", name)
        current = self._require(key)
        result = await _call(fn, current, dict(body or {}))
        item = {**(result if result is not None else current), "key": key}
        return self._replace(key, item, EventKind.ITEM_UPDATED), item

    async def all_action(
        self, name: str, body: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        await self._roundtrip("all_action")
        fn = self._lookup(self._all_actions, "all action", name)
        results = await _call(fn, self._under(locations), dict(body or {}))
        items: list[Item] = []
        for result in results or ():
            key = key_of(result)
            if key is None:
                continue
            self._replace(key, dict(result), EventKind.ITEM_UPDATED)
            items.append(self._store[key])
        return self.snapshot(), items

    async def facet(
        self, key: ScopeKey, name: str, params: ParameterBag | None = None
    ) -> tuple[CacheSnapshot, Any]:
        await self._roundtrip("facet")
        fn = self._lookup(self._facets, "facet", name)
        result = await _call(fn, self._require(key), dict(params or {}))
        return self.snapshot(), result

    async def all_facet(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Any]:
        await self._roundtrip("all_facet")
        fn = self._lookup(self._all_facets, "all facet", name)
        result = await _call(fn, self._under(locations), dict(params or {}))
        return self.snapshot(), result

    async def find(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        await self._roundtrip("find")
        items = await self._find(name, params, locations)
        self._cache(items)
        self._emit(
            CacheEvent(
                EventKind.ITEMS_QUERIED,
                items=tuple(items),
                query={"finder": name, "params": dict(params or {})},
                locations=tuple(locations),
                source=self.name,
            )
        )
        return self.snapshot(), items

    async def find_one(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item | None]:
        await self._roundtrip("find_one")
        items = await self._find(name, params, locations)
        if not items:
            return self.snapshot(), None
        self._cache(items[:1])
        return self.snapshot(), items[0]

    async def set(self, key: ScopeKey, item: Item) -> tuple[CacheSnapshot, Item]:
        await self._roundtrip("set")
        stored = {**item, "key": key}
        return self._replace(key, stored, EventKind.ITEM_SET), stored

    # Cache control

    async def invalidate(self, locations: LocationChain | None = None) -> None:
        """Tell subscribers that cached query results may be stale."""
        if locations:
            self._emit(
                CacheEvent(
                    EventKind.LOCATION_INVALIDATED,
                    locations=tuple(locations),
                    source=self.name,
                )
            )
        self._emit(CacheEvent(EventKind.QUERY_INVALIDATED, locations=locations, source=self.name))

    async def clear(self) -> None:
        """Drop every cached key; the backing store is kept."""
        self._cached.clear()
        self._emit(CacheEvent(EventKind.CACHE_CLEARED, source=self.name))

    def snapshot(self) -> CacheSnapshot:
        return CacheSnapshot(
            self._key_types,
            {key: self._store[key] for key in self._cached if key in self._store},
        )

    # Events

    def subscribe(self, handler: EventHandler, options: SubscriptionOptions) -> Subscription:
        listener = _Listener(handler, options, self._deliver)
        self._listeners.append(listener)

        def release() -> None:
            listener.timer.cancel()
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(release)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def _emit(self, event: CacheEvent) -> None:
        for listener in list(self._listeners):
            if not listener.options.matches(event):
                continue
            listener.last_event = event
            listener.timer.arm()

    def _deliver(self, listener: _Listener) -> None:
        event, listener.last_event = listener.last_event, None
        if event is None or listener not in self._listeners:
            return
        dispatch(listener.handler, event, tasks=self._tasks, label=f"{self.name} event handler")

    # Helpers

    async def _roundtrip(self, operation: str) -> None:
        self.calls.append(operation)
        await asyncio.sleep(self.latency_ms / 1000 if self.latency_ms > 0 else 0)

    def _under(self, locations: LocationChain) -> list[Item]:
        if len(self._key_types) == 1:
            return list(self._store.values())
        return [
            item
            for key, item in self._store.items()
            if isinstance(key, ComKey) and chain_startswith(key.loc, locations)
        ]

    async def _find(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> list[Item]:
        predicate = self._lookup(self._finders, "finder", name)
        bag = dict(params or {})
        found = []
        for item in self._under(locations):
            if await _call(predicate, item, bag):
                found.append(item)
        return found

    def _require(self, key: ScopeKey) -> Item:
        item = self._store.get(key)
        if item is None:
            raise ItemNotFound(key)
        return item

    @staticmethod
    def _lookup(
        registry: dict[str, Callable[..., Any]], kind: str, name: str
    ) -> Callable[..., Any]:
        fn = registry.get(name)
        if fn is None:
            raise UnknownOperation(kind, name)
        return fn

    def _cache(self, items: Iterable[Item]) -> None:
        for item in items:
            key = key_of(item)
            if key is not None:
                self._cached.add(key)

    def _replace(self, key: ScopeKey, item: Item, kind: EventKind) -> CacheSnapshot:
        self._store[key] = item
        self._cached.add(key)
        self._emit(CacheEvent(kind, key=key, item=item, source=self.name))
        return self.snapshot()
