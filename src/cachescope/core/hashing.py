"""Stable hashing of parameter bags.

A parameter bag is a mapping of string keys to scalars (str, int, float,
bool, date/datetime) or lists of scalars. Its hash is the canonical JSON text
of the bag, used as a memoization key for facet and finder results:

- keys are sorted at every depth, so insertion order never matters
- keys whose value is None are always omitted (absent == None)
- date and datetime values encode as {"$date": "<iso>"} so they never
  collide with an equal ISO string
- tuples encode like lists, dataclasses like mappings of their fields
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from datetime import date
from typing import Any

import orjson

ORJSON_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, date):
        return {"$date": value.isoformat()}
    if is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _normalize(getattr(value, f.name))
            for f in fields(value)
            if getattr(value, f.name) is not None
        }
    return value


def canonical_bytes(bag: Any) -> bytes:
    """Return canonical JSON bytes for a parameter bag (None hashes like {})."""
    return orjson.dumps(_normalize({} if bag is None else bag), option=ORJSON_OPTIONS)


def stable_hash(bag: Any) -> str:
    """Return the order-independent memoization key for a parameter bag."""
    return canonical_bytes(bag).decode("utf-8")


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality under the same rules as stable_hash."""
    return canonical_bytes(a) == canonical_bytes(b)
