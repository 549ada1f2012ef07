"""Debounced invalidation subscriptions.

Keeps a derived query fresh when the cache changes out of band. The
subscriber registers with the cache source's event stream, filters events by
kind, and collapses bursts arriving within ``debounce_ms`` into a single call
of the refetch callback.

Example:
    subscriber = InvalidationSubscriber(source, refetch, debounce_ms=50)
    subscription = subscriber.subscribe()
    ...
    subscription.unsubscribe()  # idempotent
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from cachescope.config import settings
from cachescope.core.keys import ScopeKey
from cachescope.errors import SubscriptionFailure
from cachescope.events.dispatch import DebounceTimer, dispatch
from cachescope.events.schemas import (
    INVALIDATION_EVENTS,
    CacheEvent,
    EventHandler,
    EventKind,
    SubscriptionOptions,
)

if TYPE_CHECKING:
    from cachescope.source.base import CacheSource

logger = logging.getLogger(__name__)


class Subscription:
    """Handle for an active subscription.

    unsubscribe() releases the registration exactly once; later calls are
    no-ops. A handle created without a release callback is a no-op
    subscription (the source offers no live invalidation).
    """

    __slots__ = ("_release", "_active", "failure")

    def __init__(
        self,
        release: Callable[[], None] | None = None,
        failure: SubscriptionFailure | None = None,
    ):
        self._release = release
        self._active = True
        self.failure = failure

    @property
    def active(self) -> bool:
        return self._active

    @property
    def live(self) -> bool:
        """True if events can actually arrive through this handle."""
        return self._active and self.failure is None

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        if release is not None:
            release()


def subscribe_to(
    source: Any,
    handler: EventHandler,
    options: SubscriptionOptions,
    name: str,
) -> Subscription:
    """Subscribe to a source, treating a missing or failing subscribe as no-op."""
    subscribe = getattr(source, "subscribe", None) if source is not None else None
    if not callable(subscribe):
        failure = SubscriptionFailure(name, "source does not support subscriptions")
        logger.debug(f"Cache subscription not available in {name}")
        return Subscription(failure=failure)

    try:
        upstream = subscribe(handler, options)
    except Exception as e:
        failure = SubscriptionFailure(name, str(e))
        logger.debug(f"Cache subscription not available in {name}: {e}")
        return Subscription(failure=failure)

    if isinstance(upstream, Subscription):
        return upstream

    def release() -> None:
        unsubscribe = getattr(upstream, "unsubscribe", None)
        if callable(unsubscribe):
            unsubscribe()

    return Subscription(release)


class InvalidationSubscriber:
    """Debounced subscription to a cache source's change events."""

    def __init__(
        self,
        source: CacheSource | None,
        on_event: EventHandler,
        *,
        event_types: Iterable[EventKind | str] = INVALIDATION_EVENTS,
        debounce_ms: int | None = None,
        keys: Iterable[ScopeKey] | None = None,
        name: str = "subscriber",
    ):
        self.name = name
        self.event_types = frozenset(EventKind(e) for e in event_types)
        self.debounce_ms = (
            settings.invalidation_debounce_ms if debounce_ms is None else debounce_ms
        )
        self.keys = tuple(keys) if keys is not None else None
        self._source = source
        self._on_event = on_event
        self._timer = DebounceTimer(self.debounce_ms, self._fire)
        self._subscription: Subscription | None = None
        self._last_event: CacheEvent | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def source(self) -> CacheSource | None:
        return self._source

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    def subscribe(self) -> Subscription:
        """Register with the source. Returns the existing handle if active."""
        if self._subscription is not None and self._subscription.active:
            return self._subscription

        # The source applies the kind/key filter; pacing happens here
        options = SubscriptionOptions(event_types=self.event_types, debounce_ms=0, keys=self.keys)
        upstream = subscribe_to(self._source, self._handle, options, self.name)

        def release() -> None:
            self._timer.cancel()
            self._last_event = None
            upstream.unsubscribe()

        self._subscription = Subscription(release, failure=upstream.failure)
        return self._subscription

    def unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()

    def rebind(self, source: CacheSource | None) -> Subscription:
        """Move the subscription to another source, releasing the old one first."""
        if source is self._source and self.active:
            return self._subscription  # type: ignore[return-value]
        self.unsubscribe()
        self._source = source
        self._subscription = None
        return self.subscribe()

    async def drain(self) -> None:
        """Wait for refetch callbacks that are already running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _handle(self, event: CacheEvent) -> None:
        if not self.active or event.kind not in self.event_types:
            return
        self._last_event = event
        self._timer.arm()

    def _fire(self) -> None:
        event, self._last_event = self._last_event, None
        if event is None or not self.active:
            return
        logger.debug(f"{self.name}: invalidation after {event.kind.value}")
        dispatch(self._on_event, event, tasks=self._tasks, label=f"{self.name} refetch")

    async def __aenter__(self) -> InvalidationSubscriber:
        self.subscribe()
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.unsubscribe()
