"""Watchers that follow cache events directly.

CacheItemWatcher tracks one item by key; CacheQueryWatcher tracks the result
of an all() query. Both subscribe to the cache source's event stream, apply
matching events to their local state, and notify listeners on every change.
A request counter drops responses to superseded loads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cachescope.config import settings
from cachescope.core.hashing import deep_equal, stable_hash
from cachescope.core.keys import (
    Item,
    LocationChain,
    Query,
    ScopeKey,
    abbrev_key,
    abbrev_locations,
    abbrev_query,
    key_of,
    keys_match,
)
from cachescope.events.schemas import CacheEvent, EventKind, SubscriptionOptions
from cachescope.events.subscriber import Subscription, subscribe_to
from cachescope.source.base import CacheSource

logger = logging.getLogger(__name__)

WatcherListener = Callable[[Any], None]

ITEM_WATCH_EVENTS = frozenset(
    {
        EventKind.ITEM_CREATED,
        EventKind.ITEM_UPDATED,
        EventKind.ITEM_REMOVED,
        EventKind.ITEM_RETRIEVED,
        EventKind.ITEM_SET,
        EventKind.CACHE_CLEARED,
    }
)

QUERY_WATCH_EVENTS = frozenset(
    {
        EventKind.ITEMS_QUERIED,
        EventKind.ITEM_CREATED,
        EventKind.ITEM_UPDATED,
        EventKind.ITEM_REMOVED,
        EventKind.ITEM_RETRIEVED,
        EventKind.ITEM_SET,
        EventKind.CACHE_CLEARED,
        EventKind.QUERY_INVALIDATED,
    }
)


class _Watcher:
    def __init__(self, source: CacheSource | None):
        self.source = source
        self.is_loading = False
        self._listeners: list[WatcherListener] = []
        self._subscription: Subscription | None = None
        self._request_id = 0
        self._stopped = False
        self._tasks: set[asyncio.Task[Any]] = set()

    def watch(self, listener: WatcherListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unwatch

    def stop(self) -> None:
        self._stopped = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._listeners.clear()

    async def settle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _next_request(self) -> int:
        self._request_id += 1
        return self._request_id

    def _current(self, request_id: int) -> bool:
        return request_id == self._request_id and not self._stopped

    def _notify(self, value: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Error in watcher listener")

    async def __aenter__(self) -> Any:
        await self.start()  # type: ignore[attr-defined]
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.stop()


class CacheItemWatcher(_Watcher):
    """Follow one item through cache events."""

    def __init__(self, source: CacheSource | None, key: ScopeKey | None):
        super().__init__(source)
        self.key = key
        self.item: Item | None = None

    async def start(self) -> Item | None:
        if self.source is None or self.key is None:
            self._set(None)
            return None
        options = SubscriptionOptions(event_types=ITEM_WATCH_EVENTS, keys=(self.key,))
        self._subscription = subscribe_to(
            self.source, self._on_event, options, f"item watcher {abbrev_key(self.key)}"
        )
        return await self.refetch()

    async def refetch(self) -> Item | None:
        if self.source is None or self.key is None:
            return None
        request_id = self._next_request()
        self.is_loading = True
        try:
            _, item = await self.source.get(self.key)
        except Exception as e:
            logger.error(f"Error loading item {abbrev_key(self.key)}: {e}")
            if self._current(request_id):
                self.is_loading = False
                self._set(None)
            return None

        if self._current(request_id):
            self.is_loading = False
            self._set(item)
        return item

    def _on_event(self, event: CacheEvent) -> None:
        if self._stopped or self.key is None:
            return
        if event.kind is EventKind.CACHE_CLEARED:
            self._set(None)
        elif event.kind is EventKind.ITEM_REMOVED:
            if keys_match(event.key, self.key):
                self._set(None)
        elif event.kind in ITEM_WATCH_EVENTS and keys_match(event.key, self.key):
            self._set(event.item)

    def _set(self, item: Item | None) -> None:
        self.item = item
        self._notify(item)


class CacheQueryWatcher(_Watcher):
    """Follow the result of an all() query through cache events.

    items_queried events for the same query and locations replace the
    result, removed items are dropped, a cache clear empties it and query
    invalidation triggers a refetch. Item-level changes do not trigger
    refetches; rely on invalidation for those.
    """

    def __init__(
        self,
        source: CacheSource | None,
        query: Query | None = None,
        locations: LocationChain = (),
        all_method: Callable[[Query | None, LocationChain], Awaitable[Any]] | None = None,
        debounce_ms: int | None = None,
    ):
        super().__init__(source)
        self.query = dict(query or {})
        self.locations = tuple(locations)
        self.all_method = all_method
        self.debounce_ms = settings.query_debounce_ms if debounce_ms is None else debounce_ms
        self.items: list[Item] = []
        self._locations_hash = stable_hash(self.locations)

    async def start(self) -> list[Item]:
        if self.source is None and self.all_method is None:
            self._set([])
            return []
        if self.source is not None:
            options = SubscriptionOptions(
                event_types=QUERY_WATCH_EVENTS, debounce_ms=self.debounce_ms
            )
            self._subscription = subscribe_to(
                self.source, self._on_event, options, f"query watcher {abbrev_query(self.query)}"
            )
        return await self.refetch()

    async def refetch(self) -> list[Item]:
        request_id = self._next_request()
        self.is_loading = True
        try:
            items = await self._query()
        except Exception as e:
            logger.error(
                f"Error querying {abbrev_query(self.query)} under "
                f"{abbrev_locations(self.locations)}: {e}"
            )
            items = []

        if self._current(request_id):
            self.is_loading = False
            self._set(items)
        return items

    async def _query(self) -> list[Item]:
        if self.all_method is not None:
            result = await self.all_method(self.query, self.locations)
            if isinstance(result, list | tuple):
                return list(result)
            if isinstance(result, dict):
                return list(result.get("items") or [])
            return list(getattr(result, "items", None) or [])
        if self.source is None:
            return []
        _, items = await self.source.all(self.query, self.locations)
        return list(items)

    def _on_event(self, event: CacheEvent) -> None:
        if self._stopped:
            return
        if event.kind is EventKind.ITEMS_QUERIED:
            if deep_equal(event.query, self.query) and (
                stable_hash(event.locations or ()) == self._locations_hash
            ):
                self._set(list(event.items or ()))
        elif event.kind is EventKind.ITEM_REMOVED:
            kept = [item for item in self.items if not keys_match(key_of(item), event.key)]
            if len(kept) != len(self.items):
                self._set(kept)
        elif event.kind is EventKind.CACHE_CLEARED:
            self._set([])
        elif event.kind is EventKind.QUERY_INVALIDATED:
            logger.debug(f"Query {abbrev_query(self.query)} invalidated, refetching")
            self._spawn(self.refetch())

    def _set(self, items: list[Item]) -> None:
        self.items = items
        self._notify(items)
