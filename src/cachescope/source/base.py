"""Cache source contract.

A cache source owns the authoritative item data. Every call returns a fresh
CacheSnapshot together with the call's payload; removal returns only the
snapshot. Bindings never mutate items themselves.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from cachescope.core.keys import Item, LocationChain, ParameterBag, Query, ScopeKey
from cachescope.core.snapshot import CacheSnapshot
from cachescope.events.schemas import EventHandler, SubscriptionOptions
from cachescope.events.subscriber import Subscription


class CacheSource(ABC):
    """Abstract cache source interface."""

    @property
    @abstractmethod
    def key_types(self) -> tuple[str, ...]:
        """Item key type followed by ancestor key types, nearest first."""
        pass

    @abstractmethod
    async def all(
        self, query: Query | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        """Return every item matching the query under a location chain."""
        pass

    @abstractmethod
    async def one(
        self, query: Query | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item | None]:
        pass

    @abstractmethod
    async def create(
        self, properties: Item, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item]:
        pass

    @abstractmethod
    async def get(self, key: ScopeKey) -> tuple[CacheSnapshot, Item | None]:
        pass

    @abstractmethod
    async def remove(self, key: ScopeKey) -> CacheSnapshot:
        pass

    @abstractmethod
    async def retrieve(self, key: ScopeKey) -> tuple[CacheSnapshot | None, Item | None]:
        """Return an item, from cache if present.

        A cache hit returns (None, item): the snapshot is unchanged and the
        caller folds the item into its current view.
        """
        pass

    @abstractmethod
    async def update(self, key: ScopeKey, properties: Item) -> tuple[CacheSnapshot, Item]:
        pass

    @abstractmethod
    async def action(
        self, key: ScopeKey, name: str, body: ParameterBag | None = None
    ) -> tuple[CacheSnapshot, Item]:
        pass

    @abstractmethod
    async def all_action(
        self, name: str, body: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        pass

    @abstractmethod
    async def facet(
        self, key: ScopeKey, name: str, params: ParameterBag | None = None
    ) -> tuple[CacheSnapshot, Any]:
        pass

    @abstractmethod
    async def all_facet(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Any]:
        pass

    @abstractmethod
    async def find(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        pass

    @abstractmethod
    async def find_one(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item | None]:
        pass

    @abstractmethod
    async def set(self, key: ScopeKey, item: Item) -> tuple[CacheSnapshot, Item]:
        pass

    def subscribe(self, handler: EventHandler, options: SubscriptionOptions) -> Subscription:
        """Register for change events.

        Sources without live invalidation keep this default, which reports
        the capability as missing.
        """
        raise NotImplementedError(f"{type(self).__name__} does not emit change events")
