"""
Dependency descriptors.

A descriptor is an instruction embedded in configuration data that the
assembler (or, for ``Get``, the datastore) replaces with its resolved value.

Descriptors are a closed set of frozen dataclasses, one per kind:

    Load("style.css", "data.json")              -> loaded resource(s)
    ComponentRef("chat.py", {"color": "red"})   -> ComponentHandle
    InstanceRef("chat", {"user": "john"})       -> assembled Instance
    InstanceRef("chat", start=True)             -> assembled + started Instance
    Proxy("chat", {...})                        -> LazyInstance
    Store({"store_name": "chat"})               -> Datastore
    Get({"store_name": "chat"}, "greeting")     -> dataset (or query result)
    Set({"store_name": "chat"}, {"key": "x"})   -> stored dataset
    Delete({"store_name": "chat"}, "x")         -> deleted dataset

Configurations that come from JSON use the tagged list form instead,
``["get", {"store_name": "chat"}, "greeting"]``. ``parse`` converts such a
list into its descriptor; a leading ``"ccm."`` on the tag is accepted.
Without that prefix a list only counts as a descriptor when its arguments
have the expected shape (store settings are a dict or a URL, resources
are URLs or resource dicts), so plain data such as ``["get", "it"]`` stays
plain data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar

from .errors import InvalidDependencyError


@dataclass(frozen=True, eq=False)
class Dependency:
    """Base class for all descriptors."""

    kind: ClassVar[str] = ""


@dataclass(frozen=True, eq=False, init=False)
class Load(Dependency):
    """Load one or more resources through the resource loader."""

    kind: ClassVar[str] = "load"

    resources: tuple[Any, ...] = ()

    def __init__(self, *resources: Any):
        object.__setattr__(self, "resources", resources)

    def __repr__(self) -> str:
        return f"Load{self.resources!r}"


@dataclass(frozen=True, eq=False)
class ComponentRef(Dependency):
    """Register a component; resolves to its handle."""

    kind: ClassVar[str] = "component"

    component: Any
    config: dict[str, Any] | None = None


@dataclass(frozen=True, eq=False)
class InstanceRef(Dependency):
    """Assemble a nested instance (deferred breadth-first)."""

    kind: ClassVar[str] = "instance"

    component: Any
    config: Any = None
    start: bool = False


@dataclass(frozen=True, eq=False)
class Proxy(Dependency):
    """Placeholder that assembles its instance only when forced."""

    kind: ClassVar[str] = "proxy"

    component: Any
    config: Any = None


@dataclass(frozen=True, eq=False)
class Store(Dependency):
    """Open (or reuse) a datastore."""

    kind: ClassVar[str] = "store"

    settings: Any = None


@dataclass(frozen=True, eq=False)
class Get(Dependency):
    """Read a dataset (key, dot path or query) from a datastore."""

    kind: ClassVar[str] = "get"

    settings: Any = None
    key: Any = None


@dataclass(frozen=True, eq=False)
class Set(Dependency):
    """Create or update a dataset in a datastore."""

    kind: ClassVar[str] = "set"

    settings: Any = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class Delete(Dependency):
    """Delete a dataset from a datastore."""

    kind: ClassVar[str] = "del"

    settings: Any = None
    key: Any = None


_KINDS: dict[str, type[Dependency]] = {
    "load": Load,
    "component": ComponentRef,
    "instance": InstanceRef,
    "start": InstanceRef,
    "proxy": Proxy,
    "store": Store,
    "get": Get,
    "set": Set,
    "del": Delete,
}


_URL_LIKE = re.compile(r"(/|\.[A-Za-z0-9]+$)")


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and bool(_URL_LIKE.search(value))


def _is_settings(value: Any) -> bool:
    if value is None or isinstance(value, dict):
        return True
    if isinstance(value, str):
        return _is_url(value)
    if isinstance(value, (list, tuple)):
        return all(isinstance(item, dict) for item in value)
    return not isinstance(value, (int, float, bool))


def _is_resource(value: Any) -> bool:
    if isinstance(value, str):
        return _is_url(value)
    if isinstance(value, (list, tuple)):
        return all(_is_resource(item) for item in value)
    return value is not None and not isinstance(value, (int, float, bool))


def _is_config(value: Any) -> bool:
    return value is None or isinstance(value, (dict, Dependency)) or _tag(value) is not None


def _has_shape(tag: str, args: list[Any]) -> bool:
    """Check the arguments of an unprefixed tagged list."""
    if tag == "load":
        return bool(args) and all(_is_resource(a) for a in args)
    if tag in ("component", "instance", "start", "proxy"):
        if not 1 <= len(args) <= 2 or isinstance(args[0], (int, float, bool)) or args[0] is None:
            return False
        return len(args) == 1 or _is_config(args[1])
    if tag == "store":
        return len(args) <= 1 and (not args or _is_settings(args[0]))
    if tag == "set":
        return 1 <= len(args) <= 2 and _is_settings(args[0]) and (
            len(args) == 1 or args[1] is None or isinstance(args[1], dict)
        )
    # get, del
    return 1 <= len(args) <= 2 and _is_settings(args[0])


def _tag(value: Any) -> str | None:
    if not isinstance(value, (list, tuple)) or not value:
        return None
    head = value[0]
    if not isinstance(head, str):
        return None
    if head.startswith("ccm."):
        head = head[4:]
        return head if head in _KINDS else None
    if head not in _KINDS or not _has_shape(head, list(value[1:])):
        return None
    return head


def is_dependency(value: Any) -> bool:
    """Check for a descriptor object or a tagged descriptor list."""
    return isinstance(value, Dependency) or _tag(value) is not None


def parse(value: Any) -> Dependency:
    """
    Convert a descriptor object or tagged list into a descriptor.

    Raises:
        InvalidDependencyError: If the value is not a descriptor or has
            missing arguments
    """
    if isinstance(value, Dependency):
        return value

    tag = _tag(value)
    if tag is None:
        raise InvalidDependencyError(f"Not a dependency descriptor: {value!r}", value)

    args = list(value[1:])

    def arg(i: int, default: Any = None) -> Any:
        return args[i] if len(args) > i else default

    if tag == "load":
        return Load(*args)
    if tag in ("component", "instance", "start", "proxy") and not args:
        raise InvalidDependencyError(f"'{tag}' descriptor needs a component", value)
    if tag == "component":
        return ComponentRef(arg(0), arg(1))
    if tag == "instance":
        return InstanceRef(arg(0), arg(1))
    if tag == "start":
        return InstanceRef(arg(0), arg(1), start=True)
    if tag == "proxy":
        return Proxy(arg(0), arg(1))
    if tag == "store":
        return Store(arg(0))
    if tag == "get":
        return Get(arg(0), arg(1))
    if tag == "set":
        return Set(arg(0), arg(1) or {})
    return Delete(arg(0), arg(1))


def as_dependency(value: Any) -> Dependency | None:
    """Return the descriptor for a value, or None for ordinary values."""
    return parse(value) if is_dependency(value) else None
