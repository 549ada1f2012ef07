"""Error taxonomy for cachescope.

Three families of failure flow through a scope:
- ScopeUnresolved: an operation needed a location chain or key that was not
  available. Raised before the cache source is touched. BindingClosed is
  raised the same way for calls issued after a binding was closed.
- Source failures: the cache source rejected a call. CRUD and action
  operations re-raise the original exception; display-derived reads (facets,
  finders, queries) record a SourceOperationFailed on the scope instead.
- SubscriptionFailure: the source cannot deliver change events. Recorded on
  the subscription handle, never raised.
"""

from __future__ import annotations

from typing import Any


class CacheScopeError(Exception):
    """Base exception for cachescope errors."""

    code = "CACHESCOPE_ERROR"


class ScopeUnresolved(CacheScopeError):
    """A location chain or key required by an operation is missing."""

    code = "SCOPE_UNRESOLVED"

    def __init__(self, scope: str, operation: str, reason: str):
        self.scope = scope
        self.operation = operation
        self.reason = reason
        super().__init__(f"{scope}: {reason} for '{operation}'")


class SourceUnavailable(ScopeUnresolved):
    """The binding was constructed without a cache source."""

    code = "SOURCE_UNAVAILABLE"

    def __init__(self, scope: str, operation: str):
        super().__init__(scope, operation, "cache source not initialized")


class BindingClosed(CacheScopeError):
    """An operation was issued on a binding after close()."""

    code = "BINDING_CLOSED"

    def __init__(self, scope: str, operation: str):
        self.scope = scope
        self.operation = operation
        super().__init__(f"{scope}: binding is closed; '{operation}' not issued")


class SourceOperationFailed(CacheScopeError):
    """A cache source call failed while refreshing display state."""

    code = "SOURCE_OPERATION_FAILED"

    def __init__(self, scope: str, operation: str, cause: BaseException):
        self.scope = scope
        self.operation = operation
        self.cause = cause
        super().__init__(f"{scope}: '{operation}' failed: {cause}")
        self.__cause__ = cause


class SubscriptionFailure(CacheScopeError):
    """The cache source could not register a change-event subscription."""

    code = "SUBSCRIPTION_FAILURE"

    def __init__(self, scope: str, reason: str):
        self.scope = scope
        self.reason = reason
        super().__init__(f"{scope}: live invalidation unavailable: {reason}")


class AggregateResolutionError(CacheScopeError):
    """A required aggregate reference is missing from an item."""

    code = "AGGREGATE_UNRESOLVED"

    def __init__(self, aggregate: str, item_key: Any):
        self.aggregate = aggregate
        self.item_key = item_key
        super().__init__(f"Item {item_key!r} has no reference for required aggregate '{aggregate}'")


class ConflictingInput(CacheScopeError):
    """Mutually exclusive inputs were supplied together."""

    code = "CONFLICTING_INPUT"
