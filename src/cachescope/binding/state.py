"""Per-scope binding state.

BindingState carries four independent in-flight flags, one per operation
category. They are not a combined state machine: a scope can be loading one
query while updating another item. Flags are backed by counters so that two
overlapping calls of the same category keep the flag raised until both finish.

FacetResultStore memoizes facet and finder results by (name, parameter hash).
Inserting a result never drops entries for other pairs.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cachescope.core.hashing import stable_hash
from cachescope.core.keys import ParameterBag


class OperationCategory(str, Enum):
    """Which BindingState flag an operation raises."""

    LOADING = "loading"
    CREATING = "creating"
    UPDATING = "updating"
    REMOVING = "removing"


OPERATION_CATEGORIES: dict[str, OperationCategory] = {
    "all": OperationCategory.LOADING,
    "one": OperationCategory.LOADING,
    "get": OperationCategory.LOADING,
    "retrieve": OperationCategory.LOADING,
    "find": OperationCategory.LOADING,
    "find_one": OperationCategory.LOADING,
    "facet": OperationCategory.LOADING,
    "all_facet": OperationCategory.LOADING,
    "create": OperationCategory.CREATING,
    "update": OperationCategory.UPDATING,
    "action": OperationCategory.UPDATING,
    "all_action": OperationCategory.UPDATING,
    "set": OperationCategory.UPDATING,
    "remove": OperationCategory.REMOVING,
}


@dataclass(frozen=True, slots=True)
class BindingState:
    is_loading: bool = False
    is_creating: bool = False
    is_updating: bool = False
    is_removing: bool = False

    @property
    def busy(self) -> bool:
        return self.is_loading or self.is_creating or self.is_updating or self.is_removing


class InFlightTracker:
    """Counts in-flight operations per category."""

    def __init__(self) -> None:
        self._counts = {category: 0 for category in OperationCategory}

    def enter(self, category: OperationCategory) -> None:
        self._counts[category] += 1

    def exit(self, category: OperationCategory) -> None:
        if self._counts[category] > 0:
            self._counts[category] -= 1

    def count(self, category: OperationCategory) -> int:
        return self._counts[category]

    @contextmanager
    def track(self, category: OperationCategory) -> Iterator[None]:
        self.enter(category)
        try:
            yield
        finally:
            self.exit(category)

    @property
    def state(self) -> BindingState:
        return BindingState(
            is_loading=self._counts[OperationCategory.LOADING] > 0,
            is_creating=self._counts[OperationCategory.CREATING] > 0,
            is_updating=self._counts[OperationCategory.UPDATING] > 0,
            is_removing=self._counts[OperationCategory.REMOVING] > 0,
        )


FacetResults = Mapping[str, Mapping[str, Any]]


class FacetResultStore:
    """Results keyed by facet or finder name, then by parameter hash."""

    def __init__(self, initial: FacetResults | None = None):
        self._results: dict[str, dict[str, Any]] = {
            name: dict(entries) for name, entries in (initial or {}).items()
        }

    def merge(self, name: str, params: ParameterBag | None, result: Any) -> str:
        """Store a result for (name, hash(params)); returns the hash."""
        params_hash = stable_hash(params)
        self._results.setdefault(name, {})[params_hash] = result
        return params_hash

    def get(self, name: str, params: ParameterBag | None = None, default: Any = None) -> Any:
        return self._results.get(name, {}).get(stable_hash(params), default)

    def contains(self, name: str, params: ParameterBag | None = None) -> bool:
        return stable_hash(params) in self._results.get(name, {})

    def entries(self, name: str) -> dict[str, Any]:
        return dict(self._results.get(name, {}))

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Copy of the nested mapping, safe to publish."""
        return {name: dict(entries) for name, entries in self._results.items()}

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._results.values())

    @staticmethod
    def layered(
        base: FacetResults | None, overlay: FacetResults | None
    ) -> dict[str, dict[str, Any]]:
        """Merge overlay onto base per (name, hash); base entries are kept."""
        merged = {name: dict(entries) for name, entries in (base or {}).items()}
        for name, entries in (overlay or {}).items():
            merged.setdefault(name, {}).update(entries)
        return merged
