"""Adapter binding: the per-scope façade over a cache source.

Every operation follows the same path:
1. Resolve inputs (location chain or key). A missing or invalid input
   raises ScopeUnresolved before the cache source is touched.
2. Raise the operation category's in-flight flag.
3. Await the cache source.
4. On success, replace the binding's snapshot with the one the source
   returned, before the caller resumes.
5. Lower the flag however the call ends, cancellation included. Failures
   are logged and re-raised unchanged.

After close(), late results are discarded: no snapshot replacement, no flag
change, no watcher notification. The payload is still returned to the caller.
Operations issued after close() raise BindingClosed without reaching the
cache source.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from cachescope.binding.state import (
    OPERATION_CATEGORIES,
    BindingState,
    InFlightTracker,
)
from cachescope.config import settings
from cachescope.core.keys import (
    Item,
    LocationChain,
    LocKey,
    ParameterBag,
    Query,
    ScopeKey,
    abbrev_key,
    abbrev_locations,
    abbrev_query,
    is_valid_key,
    key_types_of,
    validate_key_types,
    validate_locations,
)
from cachescope.core.snapshot import CacheSnapshot, CacheSnapshotStore
from cachescope.errors import BindingClosed, ScopeUnresolved, SourceUnavailable
from cachescope.events.schemas import ALL_EVENTS, CacheEvent
from cachescope.events.subscriber import InvalidationSubscriber
from cachescope.observability.logging import LogContext
from cachescope.source.aggregating import AggregateSpec, create_source
from cachescope.source.base import CacheSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

BindingListener = Callable[["AdapterBinding"], None]

# Factories receive the binding's operation and return named helpers
ActionFactory = Callable[[Callable[..., Awaitable[Item]]], Mapping[str, Callable[..., Any]]]
AllActionFactory = Callable[
    [Callable[..., Awaitable[list[Item]]]], Mapping[str, Callable[..., Any]]
]
FacetFactory = Callable[[Callable[..., Awaitable[Any]]], Mapping[str, Callable[..., Any]]]


class AdapterBinding:
    """Binds one scope to a cache source.

    Args:
        name: Scope name used in logs and errors
        source: Cache source; None yields a binding whose operations raise
            SourceUnavailable
        aggregates: Aggregate references resolved onto every returned item
        events: Event references resolved onto every returned item
        debounce_ms: Debounce for cache-version bumps (defaults to
            settings.invalidation_debounce_ms)
        key_types: Required only when source is None
    """

    def __init__(
        self,
        name: str,
        source: CacheSource | None,
        *,
        aggregates: Mapping[str, AggregateSpec] | None = None,
        events: Mapping[str, AggregateSpec] | None = None,
        debounce_ms: int | None = None,
        key_types: tuple[str, ...] | None = None,
        add_actions: ActionFactory | None = None,
        add_facets: FacetFactory | None = None,
        add_all_actions: AllActionFactory | None = None,
        add_all_facets: FacetFactory | None = None,
    ):
        self.name = name
        self.source = create_source(source, aggregates, events) if source is not None else None
        if key_types is None:
            key_types = self.source.key_types if self.source is not None else ()
        self.key_types: tuple[str, ...] = tuple(key_types)
        self.store = CacheSnapshotStore(self.key_types)
        self.tracker = InFlightTracker()
        self.cache_version = 0
        self._closed = False
        self._listeners: list[BindingListener] = []

        self.actions = dict(add_actions(self.action)) if add_actions else {}
        self.facets = dict(add_facets(self.facet)) if add_facets else {}
        self.all_actions = dict(add_all_actions(self.all_action)) if add_all_actions else {}
        self.all_facets = dict(add_all_facets(self.all_facet)) if add_all_facets else {}

        self._subscriber = InvalidationSubscriber(
            self.source,
            self._on_cache_event,
            event_types=ALL_EVENTS,
            debounce_ms=debounce_ms,
            name=f"{name} binding",
        )
        self._subscriber.subscribe()

    @property
    def contained(self) -> bool:
        """True when items live inside ancestor locations."""
        return len(self.key_types) > 1

    @property
    def state(self) -> BindingState:
        return self.tracker.state

    @property
    def snapshot(self) -> CacheSnapshot:
        return self.store.current

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live(self) -> bool:
        """True if cache events reach this binding."""
        subscription = self._subscriber.subscription
        return subscription is not None and subscription.live

    def watch(self, listener: BindingListener) -> Callable[[], None]:
        """Call listener after every flag, snapshot or cache-version change."""
        self._listeners.append(listener)

        def unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unwatch

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._subscriber.unsubscribe()
        self._listeners.clear()
        logger.debug(f"Closed binding {self.name}")

    async def __aenter__(self) -> AdapterBinding:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.close()

    # Collection operations

    async def all(
        self, query: Query | None = None, locations: LocationChain | None = None
    ) -> list[Item]:
        source = self._require_source("all")
        chain = self.resolve_locations("all", locations)
        return await self._run(
            "all",
            lambda: source.all(query, chain),
            f"query={abbrev_query(query)} loc={abbrev_locations(chain)}",
        )

    async def one(
        self, query: Query | None = None, locations: LocationChain | None = None
    ) -> Item | None:
        source = self._require_source("one")
        chain = self.resolve_locations("one", locations)
        return await self._run(
            "one",
            lambda: source.one(query, chain),
            f"query={abbrev_query(query)} loc={abbrev_locations(chain)}",
        )

    async def create(self, properties: Item, locations: LocationChain | None = None) -> Item:
        source = self._require_source("create")
        chain = self.resolve_locations("create", locations, full=True)
        return await self._run(
            "create",
            lambda: source.create(properties, chain),
            f"loc={abbrev_locations(chain)}",
        )

    async def all_action(
        self,
        name: str,
        body: ParameterBag | None = None,
        locations: LocationChain | None = None,
    ) -> list[Item]:
        source = self._require_source("all_action")
        chain = self.resolve_locations("all_action", locations)
        return await self._run(
            "all_action",
            lambda: source.all_action(name, body or {}, chain),
            f"{name} loc={abbrev_locations(chain)}",
        )

    async def all_facet(
        self,
        name: str,
        params: ParameterBag | None = None,
        locations: LocationChain | None = None,
    ) -> Any:
        source = self._require_source("all_facet")
        chain = self.resolve_locations("all_facet", locations)
        return await self._run(
            "all_facet",
            lambda: source.all_facet(name, params or {}, chain),
            f"{name} params={abbrev_query(params)} loc={abbrev_locations(chain)}",
        )

    async def find(
        self,
        finder: str,
        params: ParameterBag | None = None,
        locations: LocationChain | None = None,
    ) -> list[Item]:
        source = self._require_source("find")
        chain = self.resolve_locations("find", locations)
        return await self._run(
            "find",
            lambda: source.find(finder, params or {}, chain),
            f"{finder} params={abbrev_query(params)} loc={abbrev_locations(chain)}",
        )

    async def find_one(
        self,
        finder: str,
        params: ParameterBag | None = None,
        locations: LocationChain | None = None,
    ) -> Item | None:
        source = self._require_source("find_one")
        chain = self.resolve_locations("find_one", locations)
        return await self._run(
            "find_one",
            lambda: source.find_one(finder, params or {}, chain),
            f"{finder} params={abbrev_query(params)} loc={abbrev_locations(chain)}",
        )

    # Single-item operations

    async def get(self, key: ScopeKey | None) -> Item | None:
        source = self._require_source("get")
        valid = self.resolve_key("get", key)
        return await self._run("get", lambda: source.get(valid), abbrev_key(valid))

    async def retrieve(self, key: ScopeKey | None) -> Item | None:
        source = self._require_source("retrieve")
        valid = self.resolve_key("retrieve", key)

        async def invoke() -> tuple[CacheSnapshot, Item | None]:
            snapshot, item = await source.retrieve(valid)
            if snapshot is None:
                # Cache hit: fold the item into the current view
                current = self.store.current
                snapshot = current.with_item(valid, item) if item is not None else current
            return snapshot, item

        return await self._run("retrieve", invoke, abbrev_key(valid))

    async def remove(self, key: ScopeKey | None) -> None:
        source = self._require_source("remove")
        valid = self.resolve_key("remove", key)

        async def invoke() -> tuple[CacheSnapshot, None]:
            return await source.remove(valid), None

        await self._run("remove", invoke, abbrev_key(valid))

    async def update(self, key: ScopeKey | None, properties: Item) -> Item:
        source = self._require_source("update")
        valid = self.resolve_key("update", key)
        return await self._run(
            "update", lambda: source.update(valid, properties), abbrev_key(valid)
        )

    async def action(
        self, key: ScopeKey | None, name: str, body: ParameterBag | None = None
    ) -> Item:
        source = self._require_source("action")
        valid = self.resolve_key("action", key)
        return await self._run(
            "action",
            lambda: source.action(valid, name, body or {}),
            f"{name} on {abbrev_key(valid)}",
        )

    async def facet(
        self, key: ScopeKey | None, name: str, params: ParameterBag | None = None
    ) -> Any:
        source = self._require_source("facet")
        valid = self.resolve_key("facet", key)
        return await self._run(
            "facet",
            lambda: source.facet(valid, name, params or {}),
            f"{name} on {abbrev_key(valid)} params={abbrev_query(params)}",
        )

    async def set(self, key: ScopeKey | None, item: Item) -> Item:
        source = self._require_source("set")
        valid = self.resolve_key("set", key)
        return await self._run("set", lambda: source.set(valid, item), abbrev_key(valid))

    # Input resolution

    def resolve_locations(
        self, operation: str, locations: LocationChain | None, full: bool = False
    ) -> LocationChain:
        """Return the chain an operation runs under, or raise ScopeUnresolved.

        Primary bindings run under the empty chain. Contained bindings need a
        chain; with full=True (placing a new item) it must name every ancestor.
        """
        if locations is None:
            if self.contained:
                raise ScopeUnresolved(self.name, operation, "no location chain available")
            return ()

        chain: tuple[LocKey, ...] = tuple(locations)
        if self.contained and full and not chain:
            raise ScopeUnresolved(self.name, operation, "no location chain available")
        if settings.strict_keys and not validate_locations(chain, self.key_types, full=full):
            raise ScopeUnresolved(
                self.name,
                operation,
                f"location chain {abbrev_locations(chain)} does not match "
                f"key types {'/'.join(self.key_types)}",
            )
        return chain

    def resolve_key(self, operation: str, key: ScopeKey | None) -> ScopeKey:
        if key is None or not is_valid_key(key):
            raise ScopeUnresolved(self.name, operation, f"no valid key ({abbrev_key(key)})")
        if settings.strict_keys and not validate_key_types(key, self.key_types):
            raise ScopeUnresolved(
                self.name,
                operation,
                f"key types {'/'.join(key_types_of(key))} do not match "
                f"{'/'.join(self.key_types)}",
            )
        return key

    def _require_source(self, operation: str) -> CacheSource:
        if self._closed:
            raise BindingClosed(self.name, operation)
        if self.source is None:
            raise SourceUnavailable(self.name, operation)
        return self.source

    # Execution

    async def _run(
        self,
        operation: str,
        invoke: Callable[[], Awaitable[tuple[CacheSnapshot, T]]],
        detail: str = "",
    ) -> T:
        category = OPERATION_CATEGORIES[operation]
        with LogContext(scope=self.name, operation=operation):
            logger.debug(f"{self.name}.{operation} {detail}".rstrip())
            self.tracker.enter(category)
            self._notify()
            try:
                try:
                    snapshot, payload = await invoke()
                except Exception as e:
                    logger.error(f"{self.name}.{operation} failed: {e}")
                    raise

                if self._closed:
                    logger.debug(f"{self.name}.{operation} completed after close; result discarded")
                    return payload

                self.store.replace(snapshot)
                return payload
            finally:
                if not self._closed:
                    self.tracker.exit(category)
                    self._notify()

    def _on_cache_event(self, event: CacheEvent) -> None:
        if self._closed:
            return
        self.cache_version += 1
        logger.debug(f"{self.name}: cache version {self.cache_version} after {event.kind.value}")
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception(f"Error in {self.name} binding listener")
