"""Adapter bindings between scopes and cache sources."""

from cachescope.binding.adapter import AdapterBinding, BindingListener
from cachescope.binding.state import (
    OPERATION_CATEGORIES,
    BindingState,
    FacetResults,
    FacetResultStore,
    InFlightTracker,
    OperationCategory,
)

__all__ = [
    "AdapterBinding",
    "BindingListener",
    # State
    "BindingState",
    "InFlightTracker",
    "OperationCategory",
    "OPERATION_CATEGORIES",
    # Memoized results
    "FacetResultStore",
    "FacetResults",
]
