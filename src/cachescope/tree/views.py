"""Published scope views.

A view is the immutable state a scope hands to its descendants: the item or
items, the resolved location chain, the in-flight flags, memoized facet and
finder results, the last display-side error, and the scope's bound
operations. A new view object is published on every change.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from cachescope.binding.state import BindingState
from cachescope.core.hashing import stable_hash
from cachescope.core.keys import Item, LocationChain, ParameterBag, ScopeKey

BoundOperation = Callable[..., Any]


def _bound() -> Any:
    return field(default=None, repr=False, compare=False)


def _helpers() -> Any:
    return field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class ItemView:
    """State published by a single-item scope."""

    name: str
    key: ScopeKey | None = None
    item: Item | None = None
    parent_item: Item | None = None
    locations: LocationChain | None = None
    is_loading: bool = False
    is_creating: bool = False
    is_updating: bool = False
    is_removing: bool = False
    facet_results: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    last_error: Exception | None = None

    remove: BoundOperation | None = _bound()
    update: BoundOperation | None = _bound()
    set: BoundOperation | None = _bound()
    action: BoundOperation | None = _bound()
    facet: BoundOperation | None = _bound()
    actions: Mapping[str, BoundOperation] = _helpers()
    facets: Mapping[str, BoundOperation] = _helpers()

    @property
    def state(self) -> BindingState:
        return BindingState(self.is_loading, self.is_creating, self.is_updating, self.is_removing)


@dataclass(frozen=True, slots=True)
class ItemsView:
    """State published by a collection scope."""

    name: str
    items: tuple[Item, ...] = ()
    locations: LocationChain | None = None
    parent_item: Item | None = None
    is_loading: bool = False
    is_creating: bool = False
    is_updating: bool = False
    is_removing: bool = False
    facet_results: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    last_error: Exception | None = None

    all: BoundOperation | None = _bound()
    one: BoundOperation | None = _bound()
    create: BoundOperation | None = _bound()
    update: BoundOperation | None = _bound()
    remove: BoundOperation | None = _bound()
    all_action: BoundOperation | None = _bound()
    find: BoundOperation | None = _bound()
    find_one: BoundOperation | None = _bound()
    facet: BoundOperation | None = _bound()
    all_facet: BoundOperation | None = _bound()
    set: BoundOperation | None = _bound()
    actions: Mapping[str, BoundOperation] = _helpers()
    facets: Mapping[str, BoundOperation] = _helpers()
    all_actions: Mapping[str, BoundOperation] = _helpers()
    all_facets: Mapping[str, BoundOperation] = _helpers()
    queries: Mapping[str, BoundOperation] = _helpers()

    @property
    def state(self) -> BindingState:
        return BindingState(self.is_loading, self.is_creating, self.is_updating, self.is_removing)


ScopeView = ItemView | ItemsView


def facet_result(view: Any, name: str, params: ParameterBag | None = None) -> Any:
    """Read the memoized result of a facet or finder call, or None."""
    results = getattr(view, "facet_results", None) or {}
    return results.get(name, {}).get(stable_hash(params))
