"""Cache sources.

- CacheSource: the contract every source satisfies
- InMemoryCacheSource: dict-backed reference source with change events
- AggregatingCacheSource: decorator resolving aggregate and event references
"""

from cachescope.source.aggregating import AggregateSpec, AggregatingCacheSource, create_source
from cachescope.source.base import CacheSource
from cachescope.source.memory import InMemoryCacheSource, ItemNotFound, UnknownOperation

__all__ = [
    # Contract
    "CacheSource",
    # Reference source
    "InMemoryCacheSource",
    "ItemNotFound",
    "UnknownOperation",
    # Aggregation
    "AggregateSpec",
    "AggregatingCacheSource",
    "create_source",
]
