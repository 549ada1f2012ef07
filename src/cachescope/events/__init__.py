"""Cache change events and invalidation subscriptions.

- A cache source emits CacheEvents after each change
- InvalidationSubscriber filters them by kind and debounces bursts
- Each registration yields a Subscription whose unsubscribe() is idempotent
"""

from cachescope.events.dispatch import DebounceTimer, dispatch
from cachescope.events.schemas import (
    ALL_EVENTS,
    INVALIDATION_EVENTS,
    CacheEvent,
    EventHandler,
    EventKind,
    SubscriptionOptions,
)
from cachescope.events.subscriber import InvalidationSubscriber, Subscription, subscribe_to

__all__ = [
    # Event types
    "EventKind",
    "CacheEvent",
    "EventHandler",
    "SubscriptionOptions",
    "ALL_EVENTS",
    "INVALIDATION_EVENTS",
    # Subscriptions
    "Subscription",
    "InvalidationSubscriber",
    "subscribe_to",
    # Timing
    "DebounceTimer",
    "dispatch",
]
