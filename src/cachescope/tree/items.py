"""Collection scope."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from cachescope.binding.adapter import AdapterBinding
from cachescope.binding.state import FacetResultStore
from cachescope.config import settings
from cachescope.core.keys import (
    Item,
    LocationChain,
    ParameterBag,
    Query,
    ScopeKey,
    abbrev_locations,
    key_of,
    keys_match,
)
from cachescope.errors import ScopeUnresolved
from cachescope.events.schemas import EventKind
from cachescope.events.subscriber import InvalidationSubscriber
from cachescope.tree.item import as_scope_error
from cachescope.tree.node import ScopeNode
from cachescope.tree.views import ItemsView

logger = logging.getLogger(__name__)

QueryFactory = Callable[[Callable[..., Any]], Mapping[str, Callable[..., Any]]]


class ItemsScope(ScopeNode):
    """Scope bound to the items under one location chain.

    The chain comes from the nearest item scope above. Primary bindings need
    no ancestor and run under the empty chain. Contained bindings without an
    item ancestor have no chain: loads record ScopeUnresolved on last_error,
    and mutations raise it.

    The scope owns the binding passed in and closes it on unmount. Give each
    scope its own binding; calls on a closed binding raise BindingClosed.
    """

    kind = "items"

    def __init__(
        self,
        binding: AdapterBinding,
        *,
        parent: ScopeNode | None = None,
        query: Query | None = None,
        items: list[Item] | None = None,
        name: str | None = None,
        load_on_mount: bool = True,
        add_queries: QueryFactory | None = None,
    ):
        super().__init__(name or binding.name, parent)
        self.binding = binding
        self.query = query
        self.items: list[Item] = list(items or [])
        self.last_error: Exception | None = None
        self.results = FacetResultStore()
        self.load_on_mount = load_on_mount and items is None
        self.queries = dict(add_queries(self.find)) if add_queries else {}
        self._parent_scope: ScopeNode | None = None

    @property
    def parent_item(self) -> Item | None:
        if self._parent_scope is None or self._parent_scope.view is None:
            return None
        return self._parent_scope.view.item

    @property
    def locations(self) -> LocationChain | None:
        if self._parent_scope is not None and self._parent_scope.view is not None:
            return self._parent_scope.view.locations
        if not self.binding.contained:
            return ()
        return None

    async def on_mount(self) -> None:
        self._parent_scope = self.nearest("item")
        if self._parent_scope is not None:
            self.own(self._parent_scope.watch(self._on_parent_view))
        self.own(self.binding.watch(lambda binding: self.refresh()))
        self.own(self.binding.close)
        self.subscribe_invalidation()

        self.refresh()
        if self.load_on_mount:
            await self.load()

    def subscribe_invalidation(self) -> None:
        subscriber = InvalidationSubscriber(
            self.binding.source,
            lambda event: self.spawn(self.load()),
            event_types={EventKind.QUERY_INVALIDATED},
            debounce_ms=settings.query_debounce_ms,
            name=f"{self.name} query",
        )
        subscriber.subscribe()
        self.own(subscriber.unsubscribe)

    async def load(self) -> list[Item]:
        """Run the scope's query; failures are recorded on last_error."""
        locations = self.locations
        if locations is None:
            self.last_error = ScopeUnresolved(self.name, "all", "no location chain available")
            logger.error(str(self.last_error))
            self.items = []
            self.refresh()
            return []

        try:
            items = await self.binding.all(self.query, locations)
        except Exception as e:
            if self.unmounted:
                return []
            self.last_error = as_scope_error(self.name, "all", e)
            logger.error(f"{self.name}: query under {abbrev_locations(locations)} failed: {e}")
            self.items = []
            self.refresh()
            return []

        if not self.unmounted:
            self.items = list(items)
            self.last_error = None
            self.refresh()
        return items

    def _on_parent_view(self, view: Any) -> None:
        self.refresh()

    # Bound operations

    async def all(self, query: Query | None = None) -> list[Item]:
        items = await self.binding.all(query if query is not None else self.query, self.locations)
        if not self.unmounted:
            self.items = list(items)
            self.refresh()
        return items

    async def one(self, query: Query | None = None) -> Item | None:
        return await self.binding.one(query if query is not None else self.query, self.locations)

    async def create(self, properties: Item) -> Item:
        item = await self.binding.create(properties, self.locations)
        if not self.unmounted:
            self.items = [*self.items, item]
            self.refresh()
        return item

    async def update(self, key: ScopeKey, properties: Item) -> Item:
        item = await self.binding.update(key, properties)
        self._replace_items([item])
        return item

    async def remove(self, key: ScopeKey) -> None:
        await self.binding.remove(key)
        if not self.unmounted:
            self.items = [i for i in self.items if not keys_match(key_of(i), key)]
            self.refresh()

    async def set(self, key: ScopeKey, item: Item) -> Item:
        stored = await self.binding.set(key, item)
        self._replace_items([stored])
        return stored

    async def all_action(self, name: str, body: ParameterBag | None = None) -> list[Item]:
        items = await self.binding.all_action(name, body, self.locations)
        self._replace_items(items)
        return items

    async def find(self, finder: str, params: ParameterBag | None = None) -> list[Item]:
        return await self.binding.find(finder, params, self.locations)

    async def find_one(self, finder: str, params: ParameterBag | None = None) -> Item | None:
        return await self.binding.find_one(finder, params, self.locations)

    async def facet(self, key: ScopeKey, name: str, params: ParameterBag | None = None) -> Any:
        return await self.binding.facet(key, name, params)

    async def all_facet(self, name: str, params: ParameterBag | None = None) -> Any:
        result = await self.binding.all_facet(name, params, self.locations)
        if not self.unmounted and result is not None:
            self.results.merge(name, params, result)
            self.refresh()
        return result

    def _replace_items(self, updated: list[Item]) -> None:
        if self.unmounted or not updated:
            return
        by_key = {key_of(item): item for item in updated}
        self.items = [by_key.get(key_of(item), item) for item in self.items]
        self.refresh()

    def facet_results(self) -> Mapping[str, Mapping[str, Any]]:
        return self.results.snapshot()

    def render(self) -> ItemsView:
        state = self.binding.state
        return ItemsView(
            name=self.name,
            items=tuple(self.items),
            locations=self.locations,
            parent_item=self.parent_item,
            is_loading=state.is_loading or self.tracker.state.is_loading,
            is_creating=state.is_creating,
            is_updating=state.is_updating,
            is_removing=state.is_removing,
            facet_results=self.facet_results(),
            last_error=self.last_error,
            all=self.all,
            one=self.one,
            create=self.create,
            update=self.update,
            remove=self.remove,
            all_action=self.all_action,
            find=self.find,
            find_one=self.find_one,
            facet=self.facet,
            all_facet=self.all_facet,
            set=self.set,
            actions=self.binding.actions,
            facets=self.binding.facets,
            all_actions=self.binding.all_actions,
            all_facets=self.binding.all_facets,
            queries=self.queries,
        )
