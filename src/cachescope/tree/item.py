"""Single-item scope."""

from __future__ import annotations

import logging
from typing import Any

from cachescope.binding.adapter import AdapterBinding
from cachescope.binding.state import FacetResultStore
from cachescope.core.keys import (
    ComKey,
    Item,
    LocationChain,
    LocKey,
    ParameterBag,
    PriKey,
    ScopeKey,
    abbrev_key,
    key_of,
    key_to_locations,
)
from cachescope.core.snapshot import CacheSnapshot
from cachescope.errors import (
    CacheScopeError,
    ConflictingInput,
    ScopeUnresolved,
    SourceOperationFailed,
)
from cachescope.tree.node import ScopeNode
from cachescope.tree.views import ItemView

logger = logging.getLogger(__name__)


def as_scope_error(scope: str, operation: str, error: Exception) -> Exception:
    """Library errors pass through; source failures are wrapped."""
    if isinstance(error, CacheScopeError):
        return error
    return SourceOperationFailed(scope, operation, error)


class ItemScope(ScopeNode):
    """Scope bound to one item, identified by key or supplied directly.

    The item is loaded with retrieve() on mount and kept current from the
    binding's snapshot store. Descendants read the item's location chain from
    the published view.

    The scope owns the binding passed in and closes it on unmount.
    """

    kind = "item"

    def __init__(
        self,
        binding: AdapterBinding,
        *,
        key: ScopeKey | None = None,
        item: Item | None = None,
        parent: ScopeNode | None = None,
        name: str | None = None,
    ):
        if key is not None and item is not None:
            raise ConflictingInput("Pass either a key or an item to an item scope, not both")
        super().__init__(name or binding.name, parent)
        self.binding = binding
        self.key: ScopeKey | None = key if key is not None else key_of(item)
        self.item: Item | None = item
        self.last_error: Exception | None = None
        self.results = FacetResultStore()
        self._parent_scope: ScopeNode | None = None

    @property
    def parent_item(self) -> Item | None:
        if self._parent_scope is None or self._parent_scope.view is None:
            return None
        return self._parent_scope.view.item

    @property
    def locations(self) -> LocationChain | None:
        if self.key is None:
            return None
        parent_locations = None
        if self._parent_scope is not None and self._parent_scope.view is not None:
            parent_locations = self._parent_scope.view.locations
        if parent_locations and isinstance(self.key, ComKey):
            return (LocKey(self.key.kt, self.key.pk), *parent_locations)
        return key_to_locations(self.key)

    async def on_mount(self) -> None:
        self._parent_scope = self.nearest("item")
        if self._parent_scope is not None:
            self.own(self._parent_scope.watch(lambda view: self.refresh()))
        self.own(self.binding.store.watch(self._on_snapshot))
        self.own(self.binding.watch(lambda binding: self.refresh()))
        self.own(self.binding.close)

        if self.binding.contained and isinstance(self.key, PriKey):
            self.last_error = ScopeUnresolved(
                self.name, "retrieve", f"contained scope got primary key {abbrev_key(self.key)}"
            )
            logger.error(str(self.last_error))
            self.refresh()
            return

        self.refresh()
        if self.item is None and self.key is not None:
            await self.load()

    async def load(self) -> Item | None:
        """Fetch the item; failures are recorded on last_error."""
        try:
            item = await self.binding.retrieve(self.key)
        except Exception as e:
            if self.unmounted:
                return None
            self.last_error = as_scope_error(self.name, "retrieve", e)
            logger.error(f"{self.name}: failed to load {abbrev_key(self.key)}: {e}")
            self.refresh()
            return None

        if self.unmounted:
            return item
        self.item = item
        self.last_error = None
        self.refresh()
        return item

    # Bound operations

    async def remove(self) -> None:
        await self.binding.remove(self.key)
        if not self.unmounted:
            self.item = None
            self.refresh()

    async def update(self, properties: Item) -> Item:
        return self._hold(await self.binding.update(self.key, properties))

    async def set(self, item: Item) -> Item:
        return self._hold(await self.binding.set(self.key, item))

    async def action(self, name: str, body: ParameterBag | None = None) -> Item:
        return self._hold(await self.binding.action(self.key, name, body))

    async def facet(self, name: str, params: ParameterBag | None = None) -> Any:
        result = await self.binding.facet(self.key, name, params)
        if not self.unmounted and result is not None:
            self.results.merge(name, params, result)
            self.refresh()
        return result

    def _hold(self, item: Item) -> Item:
        if not self.unmounted:
            self.item = item
            self.refresh()
        return item

    def _on_snapshot(self, snapshot: CacheSnapshot) -> None:
        if self.key is None or self.key not in snapshot:
            return
        item = snapshot[self.key]
        if item is not self.item:
            self.item = item
            self.refresh()

    def render(self) -> ItemView:
        state = self.binding.state
        return ItemView(
            name=self.name,
            key=self.key,
            item=self.item,
            parent_item=self.parent_item,
            locations=self.locations,
            is_loading=state.is_loading or self.tracker.state.is_loading,
            is_creating=state.is_creating,
            is_updating=state.is_updating,
            is_removing=state.is_removing,
            facet_results=self.results.snapshot(),
            last_error=self.last_error,
            remove=self.remove,
            update=self.update,
            set=self.set,
            action=self.action,
            facet=self.facet,
            actions=self.binding.actions,
            facets=self.binding.facets,
        )
