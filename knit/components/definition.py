"""
Component definitions and instances.

A component is the blueprint for instances: a name (plus optional
version), default configuration, the Instance subclass to create, and an
optional one-time ``init`` hook that runs on first registration.

Definitions can be written as dataclasses or as plain dicts, which is the
form component modules loaded from ``.py`` files usually use:

    # chat-2.1.0.py
    class Chat(Instance):
        async def ready(self):
            self.greeting = f"Hello {self.user}"

    component = {
        "name": "chat",
        "version": "2.1.0",
        "config": {"user": "guest", "messages": ["get", {"store_name": "chat"}]},
        "instance_class": Chat,
    }

Instances carry their id (per-component counter), their index
("chat-2-1-0-3"), a weak back-reference to the parent instance and a
reference to the definition. Every configuration property becomes a public
attribute; underscore attributes are private to the instance and never
scanned for dependencies.

Lifecycle hooks an Instance subclass may define (sync or async):
    init()   called once, parents before children
    ready()  called once, children before parents
    start()  called by start()/auto-start after assembly
"""

from __future__ import annotations

import re
import weakref
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from knit.errors import InvalidComponentError
from knit.helpers import clone, integrate
from knit.lifecycle import Lifecycle

if TYPE_CHECKING:
    from knit.runtime.context import KnitContext

FILENAME_PATTERN = re.compile(
    r"^(?:ccm\.|knit\.)?([a-z][a-z0-9_]*)(?:-(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)\.(0|[1-9][0-9]*))?(?:\.min)?\.py$"
)

# Attributes managed by the assembler, never treated as configuration
RESERVED = frozenset({"id", "index", "component", "parent"})


class Instance(Lifecycle):
    """Base class for assembled instances."""

    def __init__(self) -> None:
        self.id: int = 0
        self.index: str = ""
        self.component: ComponentDefinition | None = None
        self._parent: weakref.ReferenceType[Instance] | None = None
        self._finished_hooks: set[str] = set()

    @property
    def parent(self) -> Instance | None:
        ref = getattr(self, "_parent", None)
        return ref() if ref is not None else None

    @parent.setter
    def parent(self, value: Instance | None) -> None:
        self._parent = weakref.ref(value) if value is not None else None

    def config_items(self) -> Iterator[tuple[str, Any]]:
        """Public configuration properties, in assignment order."""
        for name, value in list(vars(self).items()):
            if name.startswith("_") or name in RESERVED:
                continue
            yield name, value

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.index or '(unassembled)'}>"


def is_instance(value: Any) -> bool:
    return isinstance(value, Instance)


@dataclass
class ComponentDefinition:
    """
    Blueprint for instances of one component.

    Attributes:
        name: Component name (lowercase identifier)
        version: Version parts, e.g. ("2", "1", "0")
        config: Default instance configuration
        instance_class: Instance subclass to create
        init: Optional one-time hook, called with the definition on first
            registration
        instances: Number of instances created so far
    """

    name: str
    version: tuple[str, ...] | None = None
    config: dict[str, Any] = field(default_factory=dict)
    instance_class: type[Instance] = Instance
    init: Callable[[ComponentDefinition], Any] | None = None
    instances: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.version, str):
            self.version = tuple(self.version.replace("-", ".").split("."))
        elif isinstance(self.version, list):
            self.version = tuple(str(v) for v in self.version)
        if not (isinstance(self.instance_class, type) and issubclass(self.instance_class, Instance)):
            raise InvalidComponentError(
                f"instance_class of component '{self.name}' must subclass Instance",
                self.instance_class,
            )

    @property
    def index(self) -> str:
        if self.version:
            return f"{self.name}-{'-'.join(self.version)}"
        return self.name

    def new_instance(self) -> Instance:
        """Create a bare instance and advance the instance counter."""
        self.instances += 1
        instance = self.instance_class()
        instance.id = self.instances
        instance.index = f"{self.index}-{instance.id}"
        instance.component = self
        return instance

    @classmethod
    def coerce(cls, value: Any) -> ComponentDefinition:
        """
        Build a definition from a definition, dict, or loaded module value.

        A dict may give "index" instead of "name"/"version".

        Raises:
            InvalidComponentError: If the value does not describe a component
        """
        if isinstance(value, ComponentDefinition):
            return value
        if not isinstance(value, dict):
            raise InvalidComponentError(f"Not a component definition: {value!r}", value)

        data = dict(value)
        if "index" in data and "name" not in data:
            name, version = parse_index(data.pop("index"))
            data["name"] = name
            data.setdefault("version", version)
        else:
            data.pop("index", None)

        if not data.get("name"):
            raise InvalidComponentError("Component definition needs a name", value)

        known = {"name", "version", "config", "instance_class", "init"}
        unknown = set(data) - known
        if unknown:
            raise InvalidComponentError(
                f"Unknown component definition fields: {', '.join(sorted(unknown))}", value
            )
        data["config"] = dict(data.get("config") or {})
        return cls(**data)


def is_component(value: Any) -> bool:
    return isinstance(value, ComponentDefinition)


def parse_index(index: str) -> tuple[str, tuple[str, ...] | None]:
    """Split "chat-2-1-0" into ("chat", ("2", "1", "0"))."""
    name, *version = index.split("-")
    return name, tuple(version) if version else None


def index_from_url(url: str) -> str | None:
    """
    Derive a component index from a component file URL.

    "components/chat-2.1.0.py" -> "chat-2-1-0"; "ccm.chat.py" -> "chat".
    Returns None when the file name does not follow the convention.
    """
    filename = PurePosixPath(urlparse(url).path).name
    match = FILENAME_PATTERN.match(filename)
    if match is None:
        return None
    name, *version = match.groups()
    if version[0] is None:
        return name
    return "-".join([name, *version])


def is_component_url(ref: str) -> bool:
    return urlparse(ref).path.endswith(".py")


@dataclass
class ComponentHandle:
    """
    A registered component plus individual default configuration.

    Returned by ComponentRegistry.register() and by component descriptors.
    ``config`` layers over the definition's defaults; the caller's
    configuration in instance()/start() layers over both.
    """

    definition: ComponentDefinition
    config: dict[str, Any]
    _context: KnitContext = field(repr=False)

    @property
    def index(self) -> str:
        return self.definition.index

    @property
    def name(self) -> str:
        return self.definition.name

    def _merge(self, config: dict[str, Any] | None) -> dict[str, Any]:
        return integrate(clone(config) if config else None, clone(self.config)) or {}

    async def instance(self, config: dict[str, Any] | None = None) -> Instance:
        return await self._context.assembler.assemble(self.definition, self._merge(config))

    async def start(self, config: dict[str, Any] | None = None) -> Instance:
        return await self._context.assembler.start(self.definition, self._merge(config))
