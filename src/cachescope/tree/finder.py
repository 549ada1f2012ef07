"""Finder scope: a collection produced by a named finder query."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from cachescope.binding.adapter import AdapterBinding
from cachescope.binding.state import FacetResultStore
from cachescope.core.hashing import stable_hash
from cachescope.core.keys import Item, ParameterBag, abbrev_query
from cachescope.errors import ScopeUnresolved
from cachescope.events.schemas import INVALIDATION_EVENTS
from cachescope.events.subscriber import InvalidationSubscriber
from cachescope.tree.item import as_scope_error
from cachescope.tree.items import ItemsScope
from cachescope.tree.node import Attached, Attachment, Detached, ScopeNode, resolve_attachment

logger = logging.getLogger(__name__)


class FinderScope(ItemsScope):
    """Runs find(finder, params) under the resolved location chain.

    Each distinct parameter bag is memoized under (finder, hash(params)), so
    changing params adds an entry instead of overwriting the previous one.
    The scope refetches after item changes, query invalidation and cache
    clears, debounced. When nested in another collection scope, the
    published results layer on top of that scope's results.
    """

    def __init__(
        self,
        binding: AdapterBinding,
        finder: str,
        params: ParameterBag | None = None,
        *,
        parent: ScopeNode | None = None,
        name: str | None = None,
        debounce_ms: int | None = None,
    ):
        super().__init__(binding, parent=parent, name=name or f"{binding.name}:{finder}")
        self.finder = finder
        self.params: dict[str, Any] = dict(params or {})
        self.debounce_ms = debounce_ms
        self.attachment: Attachment = Detached(self.kind)

    async def on_mount(self) -> None:
        self.attachment = resolve_attachment(self, self.kind)
        if isinstance(self.attachment, Attached):
            self.own(self.attachment.ancestor.watch(lambda view: self.refresh()))
        await super().on_mount()

    def subscribe_invalidation(self) -> None:
        subscriber = InvalidationSubscriber(
            self.binding.source,
            lambda event: self.spawn(self.load()),
            event_types=INVALIDATION_EVENTS,
            debounce_ms=self.debounce_ms,
            name=f"{self.name} finder",
        )
        subscriber.subscribe()
        self.own(subscriber.unsubscribe)

    async def set_params(self, params: ParameterBag | None) -> list[Item]:
        """Switch to another parameter bag and fetch it."""
        self.params = dict(params or {})
        return await self.load()

    async def load(self) -> list[Item]:
        params = dict(self.params)
        locations = self.locations
        if locations is None:
            self.last_error = ScopeUnresolved(self.name, "find", "no location chain available")
            logger.error(str(self.last_error))
            self.items = []
            self.refresh()
            return []

        try:
            items = await self.binding.find(self.finder, params, locations)
        except Exception as e:
            if self.unmounted:
                return []
            self.last_error = as_scope_error(self.name, "find", e)
            logger.error(f"{self.name}: {self.finder} {abbrev_query(params)} failed: {e}")
            if stable_hash(params) == stable_hash(self.params):
                self.items = []
            self.refresh()
            return []

        if self.unmounted:
            return items
        self.results.merge(self.finder, params, list(items))
        # A slower response for superseded params must not replace current items
        if stable_hash(params) == stable_hash(self.params):
            self.items = list(items)
            self.last_error = None
        self.refresh()
        return items

    def facet_results(self) -> Mapping[str, Mapping[str, Any]]:
        own = self.results.snapshot()
        if isinstance(self.attachment, Attached) and self.attachment.ancestor.view is not None:
            return FacetResultStore.layered(self.attachment.ancestor.view.facet_results, own)
        return own
