"""
Dataset and configuration helpers.

Small, dependency-free utilities shared by the assembler and the datastore
layer. They operate on plain JSON-like structures (dicts, lists, scalars)
and deliberately leave every other object untouched, so that instances,
datastores and component definitions embedded in a configuration are
shared rather than copied.

Usage:
    dataset = integrate({"key": "x", "a.b": 1}, {"key": "x"})
    # {"key": "x", "a": {"b": 1}}

    is_subset({"a": 1}, {"a": 1, "b": 2})  # True
"""

from __future__ import annotations

import json
import random
import re
import time
from typing import Any

KEY_PATTERN = re.compile(r"^[a-zA-Z_0-9]+$")

_MISSING = object()


def clone(value: Any) -> Any:
    """
    Deep copy plain data.

    Dicts and lists are copied recursively; everything else (instances,
    datastores, descriptors, callables, modules) is returned as-is.
    """
    if isinstance(value, dict):
        return {k: clone(v) for k, v in value.items()}
    if isinstance(value, list):
        return [clone(v) for v in value]
    return value


def deep_value(obj: Any, path: str, value: Any = _MISSING) -> Any:
    """
    Get or set a value by dot-separated path.

    Args:
        obj: Mapping (or object with attributes) to walk
        path: Dot path, e.g. "feedback.user.comment"
        value: When given, the value is stored at the path and missing
            intermediate dicts are created

    Returns:
        The value at the path (or the stored value), None if unreachable
    """
    keys = path.split(".")
    current = obj
    for i, key in enumerate(keys):
        if current is None:
            return None
        last = i == len(keys) - 1
        if last:
            if value is not _MISSING:
                assign_slot(current, key, value)
                return value
            return _fetch(current, key)
        nxt = _fetch(current, key)
        if nxt is None and value is not _MISSING:
            nxt = {}
            assign_slot(current, key, nxt)
        current = nxt
    return None


def _fetch(container: Any, key: str) -> Any:
    if isinstance(container, dict):
        return container.get(key)
    if isinstance(container, list):
        try:
            return container[int(key)]
        except (ValueError, IndexError):
            return None
    return getattr(container, key, None)


def assign_slot(container: Any, key: Any, value: Any) -> None:
    """Store a value in a dict entry, list position or attribute."""
    if isinstance(container, dict):
        container[key] = value
    elif isinstance(container, list):
        container[int(key)] = value
    else:
        setattr(container, key, value)


def integrate(priodata: Any, dataset: Any, *, as_defaults: bool = False) -> Any:
    """
    Integrate priority data into a dataset.

    Every top-level property of the priority data overwrites the same
    property of the dataset. Keys containing dots address nested values
    ("a.b": 1 only touches dataset["a"]["b"]).

    Args:
        priodata: Priority data (wins over dataset values)
        dataset: Target; mutated in place
        as_defaults: Only fill properties the dataset does not have yet

    Returns:
        The dataset with integrated priority data. If either side is
        empty the other one is returned.
    """
    if not priodata:
        return dataset
    if dataset is None:
        return priodata

    for key, value in priodata.items():
        if as_defaults and deep_value(dataset, key) is not None:
            continue
        deep_value(dataset, key, value)

    return dataset


def is_subset(query: dict[str, Any], other: Any) -> bool:
    """Check that every property of the query is present and equal in other."""
    if not isinstance(other, dict):
        return not query
    for key, value in query.items():
        if key not in other:
            return False
        candidate = other[key]
        if isinstance(value, (dict, list)) and isinstance(candidate, (dict, list)):
            if _canonical(value) != _canonical(candidate):
                return False
        elif value != candidate:
            return False
    return True


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def filter_properties(obj: dict[str, Any], *names: str) -> dict[str, Any]:
    """Return only the named properties that are set (not None)."""
    return {name: obj[name] for name in names if obj.get(name) is not None}


def generate_key() -> str:
    """
    Generate a unique dataset key.

    Milliseconds since epoch, an "X" separator and a random digit string,
    e.g. "1465718738384X6869462723575014". Keys sort by creation time.
    """
    return f"{int(time.time() * 1000)}X{random.randrange(10**16):016d}"


def is_valid_key(key: Any) -> bool:
    """
    Check a dataset key.

    Strings and integers must match KEY_PATTERN; a list key (composite key)
    is valid when every element is.
    """
    if isinstance(key, list):
        return len(key) > 0 and all(is_valid_key(k) for k in key)
    if isinstance(key, bool):
        return False
    if isinstance(key, int):
        return KEY_PATTERN.match(str(key)) is not None
    if isinstance(key, str):
        return KEY_PATTERN.match(key) is not None
    return False


def is_dataset(value: Any) -> bool:
    return isinstance(value, dict)


def cache_key(key: Any) -> Any:
    """Hashable form of a dataset key (list keys become tuples)."""
    if isinstance(key, list):
        return tuple(cache_key(k) for k in key)
    return key
