"""Cache change events.

A cache source emits a CacheEvent after each change to its contents.
Subscribers register with SubscriptionOptions describing which event kinds
(and optionally which keys) they care about and how long to debounce.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from cachescope.core.keys import Item, LocationChain, Query, ScopeKey, keys_match


class EventKind(str, Enum):
    """Kind of cache change."""

    ITEM_CREATED = "item_created"
    ITEM_UPDATED = "item_updated"
    ITEM_REMOVED = "item_removed"
    ITEM_RETRIEVED = "item_retrieved"
    ITEM_SET = "item_set"
    ITEMS_QUERIED = "items_queried"
    QUERY_INVALIDATED = "query_invalidated"
    LOCATION_INVALIDATED = "location_invalidated"
    CACHE_CLEARED = "cache_cleared"


# Kinds after which a derived query (finder, facet, list) may be stale
INVALIDATION_EVENTS: frozenset[EventKind] = frozenset(
    {
        EventKind.ITEM_CREATED,
        EventKind.ITEM_UPDATED,
        EventKind.ITEM_REMOVED,
        EventKind.QUERY_INVALIDATED,
        EventKind.CACHE_CLEARED,
    }
)

ALL_EVENTS: frozenset[EventKind] = frozenset(EventKind)

# Kinds that concern the whole cache rather than one key
_BROADCAST_EVENTS = frozenset(
    {EventKind.QUERY_INVALIDATED, EventKind.LOCATION_INVALIDATED, EventKind.CACHE_CLEARED}
)


@dataclass(frozen=True, slots=True)
class CacheEvent:
    """One change in a cache source."""

    kind: EventKind
    key: ScopeKey | None = None
    item: Item | None = None
    items: tuple[Item, ...] | None = None  # items_queried only
    query: Query | None = None
    locations: LocationChain | None = None
    source: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def _kinds(values: Iterable[EventKind | str]) -> frozenset[EventKind]:
    return frozenset(EventKind(v) for v in values)


@dataclass(frozen=True, slots=True)
class SubscriptionOptions:
    """Filter and pacing for one subscription.

    Attributes:
        event_types: Event kinds to deliver
        debounce_ms: Collapse bursts arriving within this window into one
            delivery of the last event (0 delivers every event)
        keys: Only deliver per-item events for these keys
    """

    event_types: frozenset[EventKind] = ALL_EVENTS
    debounce_ms: int = 0
    keys: tuple[ScopeKey, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_types", _kinds(self.event_types))
        if self.keys is not None:
            object.__setattr__(self, "keys", tuple(self.keys))
        if self.debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")

    def matches(self, event: CacheEvent) -> bool:
        """Check whether an event passes this filter."""
        if event.kind not in self.event_types:
            return False
        if self.keys is None or event.kind in _BROADCAST_EVENTS or event.key is None:
            return True
        return any(keys_match(event.key, key) for key in self.keys)


EventHandler = Callable[[CacheEvent], Awaitable[Any] | Any]
