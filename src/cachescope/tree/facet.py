"""Facet scope: the result of a named read-only computed query.

An item facet runs against the nearest item scope's key; a collection facet
runs against the nearest collection scope's location chain.

Attached (an ancestor of the target kind exists): the scope republishes the
ancestor's view with its own result merged into facet_results. Ancestor
entries are never dropped.

Detached: the scope publishes a fresh view holding only its own result.
Collection facets then resolve their chain like a collection scope would;
item facets need an explicit key.

Failures are logged and recorded on last_error; the result stays None and
loading settles to False.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Literal

from cachescope.binding.adapter import AdapterBinding
from cachescope.binding.state import FacetResultStore, OperationCategory
from cachescope.core.keys import LocationChain, ParameterBag, ScopeKey, key_to_locations
from cachescope.errors import ScopeUnresolved
from cachescope.events.schemas import INVALIDATION_EVENTS
from cachescope.events.subscriber import InvalidationSubscriber
from cachescope.tree.item import as_scope_error
from cachescope.tree.node import Attached, Attachment, Detached, ScopeNode, resolve_attachment
from cachescope.tree.views import ItemsView, ItemView

logger = logging.getLogger(__name__)

FacetTarget = Literal["item", "items"]


class FacetScope(ScopeNode):
    kind = "facet"

    def __init__(
        self,
        facet: str,
        params: ParameterBag | None = None,
        *,
        target: FacetTarget = "item",
        parent: ScopeNode | None = None,
        binding: AdapterBinding | None = None,
        key: ScopeKey | None = None,
        name: str | None = None,
        debounce_ms: int | None = None,
    ):
        if target not in ("item", "items"):
            raise ValueError(f"Unknown facet target: {target}")
        super().__init__(name or f"{target}:{facet}", parent)
        self.facet = facet
        self.params: dict[str, Any] = dict(params or {})
        self.target = target
        self.key = key
        self.debounce_ms = debounce_ms
        self.result: Any = None
        self.last_error: Exception | None = None
        self.results = FacetResultStore()
        self.attachment: Attachment = Detached(target)
        self._binding = binding

    @property
    def binding(self) -> AdapterBinding | None:
        if self._binding is not None:
            return self._binding
        if isinstance(self.attachment, Attached):
            return getattr(self.attachment.ancestor, "binding", None)
        return None

    @property
    def ancestor_view(self) -> Any:
        if isinstance(self.attachment, Attached):
            return self.attachment.ancestor.view
        return None

    @property
    def locations(self) -> LocationChain | None:
        view = self.ancestor_view
        if view is not None:
            return view.locations
        if self.target == "item":
            return key_to_locations(self.key) if self.key is not None else None
        item_scope = self.nearest("item")
        if item_scope is not None and item_scope.view is not None:
            return item_scope.view.locations
        binding = self.binding
        if binding is not None and not binding.contained:
            return ()
        return None

    @property
    def target_key(self) -> ScopeKey | None:
        view = self.ancestor_view
        if view is not None:
            return view.key
        return self.key

    async def on_mount(self) -> None:
        self.attachment = resolve_attachment(self, self.target)
        # Descendants looking for the target kind see this scope's merged view
        self.aliases = frozenset({self.target})

        if isinstance(self.attachment, Attached):
            self.own(self.attachment.ancestor.watch(lambda view: self.refresh()))
        if self._binding is not None:
            self.own(self._binding.close)

        if self.target == "items" and self.binding is not None:
            subscriber = InvalidationSubscriber(
                self.binding.source,
                lambda event: self.spawn(self.load()),
                event_types=INVALIDATION_EVENTS,
                debounce_ms=self.debounce_ms,
                name=f"{self.name} facet",
            )
            subscriber.subscribe()
            self.own(subscriber.unsubscribe)

        self.refresh()
        await self.load()

    async def set_params(self, params: ParameterBag | None) -> Any:
        self.params = dict(params or {})
        return await self.load()

    async def load(self) -> Any:
        params = dict(self.params)
        with self.inflight(OperationCategory.LOADING):
            try:
                result = await self._fetch(params)
            except Exception as e:
                if self.unmounted:
                    return None
                self.result = None
                self.last_error = as_scope_error(self.name, self.facet, e)
                logger.error(f"{self.name}: facet '{self.facet}' failed: {e}")
                return None

            if self.unmounted:
                return result
            self.result = result
            self.last_error = None
            if result is not None:
                self.results.merge(self.facet, params, result)
            return result

    async def _fetch(self, params: dict[str, Any]) -> Any:
        binding = self.binding
        if binding is None:
            raise ScopeUnresolved(self.name, self.facet, "no binding available")
        if self.target == "item":
            key = self.target_key
            if key is None:
                raise ScopeUnresolved(self.name, self.facet, "no item key available")
            return await binding.facet(key, self.facet, params)
        locations = self.locations
        if locations is None:
            raise ScopeUnresolved(self.name, self.facet, "no location chain available")
        return await binding.all_facet(self.facet, params, locations)

    def render(self) -> ItemView | ItemsView:
        own = self.results.snapshot()
        loading = self.tracker.state.is_loading
        view = self.ancestor_view
        if view is not None:
            return dataclasses.replace(
                view,
                facet_results=FacetResultStore.layered(view.facet_results, own),
                is_loading=view.is_loading or loading,
                last_error=self.last_error or view.last_error,
            )
        if self.target == "item":
            return ItemView(
                name=self.name,
                key=self.key,
                locations=self.locations,
                is_loading=loading,
                facet_results=own,
                last_error=self.last_error,
            )
        return ItemsView(
            name=self.name,
            locations=self.locations,
            is_loading=loading,
            facet_results=own,
            last_error=self.last_error,
        )
