"""Immutable cache snapshots and the per-binding snapshot store.

Every cache source call returns a fresh CacheSnapshot. The binding that
issued the call hands it to its CacheSnapshotStore, which keeps exactly one
current snapshot. Observers see either the previous snapshot or the new one,
never a partially updated view.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence

from cachescope.core.keys import Item, ScopeKey, abbrev_key, key_of

logger = logging.getLogger(__name__)


class CacheSnapshot(Mapping[ScopeKey, Item]):
    """Point-in-time mapping of keys to items.

    Snapshots are never mutated in place. The with_* helpers return a new
    snapshot that shares item objects with this one.
    """

    __slots__ = ("_key_types", "_items")

    def __init__(
        self,
        key_types: Sequence[str],
        items: Mapping[ScopeKey, Item] | None = None,
    ):
        self._key_types: tuple[str, ...] = tuple(key_types)
        self._items: dict[ScopeKey, Item] = dict(items or {})

    @property
    def key_types(self) -> tuple[str, ...]:
        return self._key_types

    def __getitem__(self, key: ScopeKey) -> Item:
        return self._items[key]

    def __iter__(self) -> Iterator[ScopeKey]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        keys = ", ".join(abbrev_key(k) for k in list(self._items)[:5])
        more = "" if len(self._items) <= 5 else f", ... ({len(self._items)} items)"
        return f"CacheSnapshot({'/'.join(self._key_types)}: {keys}{more})"

    def clone(self) -> CacheSnapshot:
        return CacheSnapshot(self._key_types, self._items)

    def with_item(self, key: ScopeKey, item: Item) -> CacheSnapshot:
        items = dict(self._items)
        items[key] = item
        return CacheSnapshot(self._key_types, items)

    def with_items(self, items: Iterable[Item | None]) -> CacheSnapshot:
        merged = dict(self._items)
        for item in items:
            key = key_of(item)
            if key is not None:
                merged[key] = item  # type: ignore[assignment]
        return CacheSnapshot(self._key_types, merged)

    def without(self, key: ScopeKey) -> CacheSnapshot:
        items = dict(self._items)
        items.pop(key, None)
        return CacheSnapshot(self._key_types, items)


SnapshotListener = Callable[[CacheSnapshot], None]


class CacheSnapshotStore:
    """Holds the current snapshot for one binding.

    replace() is the only mutator. It copies the incoming snapshot so later
    changes to the cache source's own structures cannot leak into a
    snapshot that has already been published.
    """

    def __init__(self, key_types: Sequence[str]):
        self._current = CacheSnapshot(key_types)
        self._revision = 0
        self._listeners: list[SnapshotListener] = []

    @property
    def current(self) -> CacheSnapshot:
        return self._current

    @property
    def revision(self) -> int:
        """Number of replacements so far."""
        return self._revision

    def replace(self, snapshot: CacheSnapshot) -> CacheSnapshot:
        published = snapshot.clone()
        self._current = published
        self._revision += 1

        for listener in list(self._listeners):
            try:
                listener(published)
            except Exception:
                logger.exception("Error in snapshot listener")

        return published

    def watch(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener called after each replacement.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unwatch
