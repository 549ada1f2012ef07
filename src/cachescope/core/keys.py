"""Hierarchical item keys.

Key model:
- PriKey(kt, pk): an item identified by its type and primary key value
- LocKey(kt, lk): one ancestor container in a location chain
- ComKey(kt, pk, loc): an item inside a chain of ancestor containers

A location chain is ordered nearest ancestor first, root last. A binding
declares its key types as (item type, nearest ancestor type, ..., root type);
every ComKey it handles must carry a chain matching key_types[1:].
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias
from uuid import UUID

from cachescope.core.hashing import stable_hash

KeyValue: TypeAlias = str | int | UUID
Item: TypeAlias = Mapping[str, Any]
Query: TypeAlias = Mapping[str, Any]
ParamValue: TypeAlias = Any
ParameterBag: TypeAlias = Mapping[str, ParamValue]


@dataclass(frozen=True, slots=True)
class PriKey:
    """Primary key of a top-level item."""

    kt: str
    pk: KeyValue


@dataclass(frozen=True, slots=True)
class LocKey:
    """One ancestor in a location chain."""

    kt: str
    lk: KeyValue


@dataclass(frozen=True, slots=True)
class ComKey:
    """Composite key: primary key plus the chain of ancestor locations."""

    kt: str
    pk: KeyValue
    loc: tuple[LocKey, ...] = ()

    def __post_init__(self) -> None:
        # Accept any sequence of LocKeys but store an immutable tuple
        object.__setattr__(self, "loc", tuple(self.loc))


ScopeKey: TypeAlias = PriKey | ComKey
LocationChain: TypeAlias = tuple[LocKey, ...]


def is_pri_key(key: Any) -> bool:
    return isinstance(key, PriKey)


def is_com_key(key: Any) -> bool:
    return isinstance(key, ComKey)


def _valid_value(value: Any) -> bool:
    return value is not None and value != ""


def is_valid_pri_key(key: Any) -> bool:
    return isinstance(key, PriKey) and bool(key.kt) and _valid_value(key.pk)


def is_valid_com_key(key: Any) -> bool:
    """A ComKey is valid when its pk and every location value are set."""
    if not isinstance(key, ComKey) or not key.kt or not _valid_value(key.pk):
        return False
    if not key.loc:
        return False
    return all(loc.kt and _valid_value(loc.lk) for loc in key.loc)


def is_valid_key(key: Any) -> bool:
    return is_valid_pri_key(key) or is_valid_com_key(key)


def key_types_of(key: ScopeKey) -> tuple[str, ...]:
    """Return (kt, ancestor kt...) for a key."""
    if isinstance(key, ComKey):
        return (key.kt, *(loc.kt for loc in key.loc))
    return (key.kt,)


def key_to_locations(key: ScopeKey) -> LocationChain:
    """Location chain under which children of the keyed item live."""
    own = LocKey(kt=key.kt, lk=key.pk)
    if isinstance(key, ComKey):
        return (own, *key.loc)
    return (own,)


def validate_key_types(key: ScopeKey, key_types: Sequence[str]) -> bool:
    """Check that a key's type and chain types match a binding's key types."""
    return key_types_of(key) == tuple(key_types)


def validate_locations(
    locations: Sequence[LocKey], key_types: Sequence[str], full: bool = False
) -> bool:
    """Check a location chain against a binding's key types.

    The chain must follow key_types[1:] from the nearest ancestor outwards.
    With full=True the chain must name every ancestor, as required to place a
    new item.
    """
    expected = tuple(key_types[1:])
    actual = tuple(loc.kt for loc in locations)
    if full:
        return actual == expected
    return len(actual) <= len(expected) and actual == expected[: len(actual)]


def normalize_key(key: ScopeKey) -> ScopeKey:
    """Return a key whose values are strings, so 1 and "1" compare equal."""
    if isinstance(key, ComKey):
        return ComKey(
            kt=key.kt,
            pk=str(key.pk),
            loc=tuple(LocKey(kt=loc.kt, lk=str(loc.lk)) for loc in key.loc),
        )
    return PriKey(kt=key.kt, pk=str(key.pk))


def keys_match(a: ScopeKey | None, b: ScopeKey | None) -> bool:
    if a is None or b is None:
        return False
    return normalize_key(a) == normalize_key(b)


def chain_startswith(chain: Sequence[LocKey], prefix: Sequence[LocKey]) -> bool:
    """True if chain begins with prefix (compared on normalized values)."""
    if len(prefix) > len(chain):
        return False
    return all(
        a.kt == b.kt and str(a.lk) == str(b.lk) for a, b in zip(chain, prefix, strict=False)
    )


def key_of(item: Any) -> ScopeKey | None:
    """Read the key of an opaque item."""
    if item is None:
        return None
    if isinstance(item, Mapping):
        return item.get("key")
    return getattr(item, "key", None)


def abbrev_key(key: ScopeKey | None) -> str:
    """Short printable form of a key: kt:pk or kt:pk@lkt:lk/lkt:lk."""
    if key is None:
        return "<none>"
    base = f"{key.kt}:{key.pk}"
    if isinstance(key, ComKey) and key.loc:
        return f"{base}@{abbrev_locations(key.loc)}"
    return base


def abbrev_locations(locations: Iterable[LocKey] | None) -> str:
    if locations is None:
        return "<none>"
    parts = [f"{loc.kt}:{loc.lk}" for loc in locations]
    return "/".join(parts) if parts else "<root>"


def abbrev_query(query: Query | None, width: int = 80) -> str:
    text = stable_hash(query)
    if len(text) > width:
        return text[: width - 3] + "..."
    return text
