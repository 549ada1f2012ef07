"""Aggregating decorator over a cache source.

Wraps a base source so every returned item is augmented with named
sub-resources fetched from other sources:

- aggregates: item["refs"][name] is a key; the referenced item is stored
  under item["aggregates"][name]
- events: item["events"][name]["by"] is a key; the referenced item is
  stored under item["events"][name]["agg"]

Items are copied before augmentation, never mutated, and the snapshot
returned to the caller carries the augmented copies. The operation surface is
identical to the base source's, so callers cannot tell whether aggregation is
active. Use create_source() to decide once whether the decorator is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from cachescope.core.keys import (
    Item,
    LocationChain,
    ParameterBag,
    Query,
    ScopeKey,
    abbrev_key,
    key_of,
)
from cachescope.core.snapshot import CacheSnapshot
from cachescope.errors import AggregateResolutionError
from cachescope.events.schemas import EventHandler, SubscriptionOptions
from cachescope.events.subscriber import Subscription, subscribe_to
from cachescope.source.base import CacheSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AggregateSpec:
    """Where to fetch one named sub-resource from."""

    source: CacheSource
    optional: bool = False


class AggregatingCacheSource(CacheSource):
    """Cache source that augments items with aggregate and event references."""

    def __init__(
        self,
        base: CacheSource,
        aggregates: Mapping[str, AggregateSpec] | None = None,
        events: Mapping[str, AggregateSpec] | None = None,
    ):
        self.base = base
        self.aggregates = dict(aggregates or {})
        self.events = dict(events or {})

    @property
    def key_types(self) -> tuple[str, ...]:
        return self.base.key_types

    async def all(
        self, query: Query | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        snapshot, items = await self.base.all(query, locations)
        return await self._augment_many(snapshot, items)

    async def one(
        self, query: Query | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item | None]:
        snapshot, item = await self.base.one(query, locations)
        return await self._augment_one(snapshot, item)

    async def create(
        self, properties: Item, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item]:
        snapshot, item = await self.base.create(properties, locations)
        return await self._augment_one(snapshot, item)  # type: ignore[return-value]

    async def get(self, key: ScopeKey) -> tuple[CacheSnapshot, Item | None]:
        snapshot, item = await self.base.get(key)
        return await self._augment_one(snapshot, item)

    async def remove(self, key: ScopeKey) -> CacheSnapshot:
        return await self.base.remove(key)

    async def retrieve(self, key: ScopeKey) -> tuple[CacheSnapshot | None, Item | None]:
        snapshot, item = await self.base.retrieve(key)
        augmented = await self.augment(item) if item is not None else None
        if snapshot is None:
            return None, augmented
        return snapshot.with_items([augmented]), augmented

    async def update(self, key: ScopeKey, properties: Item) -> tuple[CacheSnapshot, Item]:
        snapshot, item = await self.base.update(key, properties)
        return await self._augment_one(snapshot, item)  # type: ignore[return-value]

    async def action(
        self, key: ScopeKey, name: str, body: ParameterBag | None = None
    ) -> tuple[CacheSnapshot, Item]:
        snapshot, item = await self.base.action(key, name, body)
        return await self._augment_one(snapshot, item)  # type: ignore[return-value]

    async def all_action(
        self, name: str, body: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        snapshot, items = await self.base.all_action(name, body, locations)
        return await self._augment_many(snapshot, items)

    async def facet(
        self, key: ScopeKey, name: str, params: ParameterBag | None = None
    ) -> tuple[CacheSnapshot, Any]:
        return await self.base.facet(key, name, params)

    async def all_facet(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Any]:
        return await self.base.all_facet(name, params, locations)

    async def find(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, list[Item]]:
        snapshot, items = await self.base.find(name, params, locations)
        return await self._augment_many(snapshot, items)

    async def find_one(
        self, name: str, params: ParameterBag | None, locations: LocationChain
    ) -> tuple[CacheSnapshot, Item | None]:
        snapshot, item = await self.base.find_one(name, params, locations)
        return await self._augment_one(snapshot, item)

    async def set(self, key: ScopeKey, item: Item) -> tuple[CacheSnapshot, Item]:
        snapshot, stored = await self.base.set(key, item)
        return await self._augment_one(snapshot, stored)  # type: ignore[return-value]

    def subscribe(self, handler: EventHandler, options: SubscriptionOptions) -> Subscription:
        name = f"aggregating:{self.base.key_types[0]}"
        subscription = subscribe_to(self.base, handler, options, name)
        if subscription.failure is not None:
            raise NotImplementedError(subscription.failure.reason)
        return subscription

    async def augment(self, item: Item) -> Item:
        """Return a copy of item with every configured reference resolved."""
        augmented: dict[str, Any] = dict(item)
        key = key_of(item)

        if self.aggregates:
            refs = item.get("refs") or {}
            aggregates: dict[str, Any] = dict(item.get("aggregates") or {})
            names = []
            fetches = []
            for name, spec in self.aggregates.items():
                ref = refs.get(name)
                if ref is None:
                    if not spec.optional:
                        raise AggregateResolutionError(name, key)
                    continue
                names.append(name)
                fetches.append(self._fetch(spec, ref))
            for name, value in zip(names, await asyncio.gather(*fetches), strict=True):
                aggregates[name] = value
            augmented["aggregates"] = aggregates

        if self.events:
            events: dict[str, Any] = {
                name: dict(entry) for name, entry in (item.get("events") or {}).items()
            }
            for name, spec in self.events.items():
                entry = events.get(name)
                ref = entry.get("by") if entry else None
                if ref is None:
                    if not spec.optional:
                        raise AggregateResolutionError(name, key)
                    continue
                entry["agg"] = await self._fetch(spec, ref)  # type: ignore[index]
            augmented["events"] = events

        return augmented

    async def _fetch(self, spec: AggregateSpec, ref: ScopeKey) -> Item | None:
        _, item = await spec.source.retrieve(ref)
        if item is None:
            logger.debug(f"Aggregate reference {abbrev_key(ref)} resolved to nothing")
        return item

    async def _augment_one(
        self, snapshot: CacheSnapshot, item: Item | None
    ) -> tuple[CacheSnapshot, Item | None]:
        if item is None:
            return snapshot, None
        augmented = await self.augment(item)
        return snapshot.with_items([augmented]), augmented

    async def _augment_many(
        self, snapshot: CacheSnapshot, items: list[Item]
    ) -> tuple[CacheSnapshot, list[Item]]:
        augmented = list(await asyncio.gather(*(self.augment(item) for item in items)))
        return snapshot.with_items(augmented), augmented


def create_source(
    base: CacheSource,
    aggregates: Mapping[str, AggregateSpec] | None = None,
    events: Mapping[str, AggregateSpec] | None = None,
) -> CacheSource:
    """Wrap base in an AggregatingCacheSource only if anything is configured."""
    if aggregates or events:
        return AggregatingCacheSource(base, aggregates, events)
    return base
