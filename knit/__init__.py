"""
Knit - declarative, dependency-driven instance assembly for asyncio.

Configurations describe a tree of runtime objects. Alongside plain values
they may hold dependency descriptors: load a resource, build a nested
instance, open a datastore, read or write a dataset. Knit resolves the
whole tree and hands back a fully wired instance graph.

- **Instance Assembler**: breadth-first resolution with init/ready hooks
- **Resource Loader**: one fetch per URL, concurrent requests coalesced
- **Tiered Datastores**: one get/set/delete interface over an in-memory
  cache, a local indexed store and remote services (http or realtime)

Quick Start:
    >>> from knit import KnitContext, Instance, InstanceRef, Store
    >>>
    >>> class Chat(Instance):
    ...     async def ready(self):
    ...         self.messages = await self.store.get()
    >>>
    >>> async with KnitContext() as knit:
    ...     chat = await knit.start(
    ...         {"name": "chat", "instance_class": Chat},
    ...         {"store": Store({"store_name": "chat"})},
    ...     )
"""

__version__ = "0.1.0"

from knit.components import ComponentDefinition, ComponentHandle, Instance
from knit.config import KnitSettings, get_settings
from knit.dependencies import (
    ComponentRef,
    Delete,
    Get,
    InstanceRef,
    Load,
    Proxy,
    Set,
    Store,
    is_dependency,
    parse,
)
from knit.errors import (
    ComponentNotFoundError,
    InvalidComponentError,
    InvalidDependencyError,
    KnitError,
    RemoteAuthError,
    RemoteNotFoundError,
    RemoteStoreError,
    ResourceLoadError,
    StalledDependencyError,
)
from knit.runtime import KnitContext, LazyInstance, get_context, reset_context
from knit.runtime.context import clear, delete, get, instance, load, register, set, start
from knit.store import Datastore, StoreSettings

__all__ = [
    # Version info
    "__version__",
    # Context and module-level API
    "KnitContext",
    "get_context",
    "reset_context",
    "clear",
    "delete",
    "get",
    "instance",
    "load",
    "register",
    "set",
    "start",
    # Components
    "ComponentDefinition",
    "ComponentHandle",
    "Instance",
    "LazyInstance",
    # Descriptors
    "ComponentRef",
    "Delete",
    "Get",
    "InstanceRef",
    "Load",
    "Proxy",
    "Set",
    "Store",
    "is_dependency",
    "parse",
    # Datastores
    "Datastore",
    "StoreSettings",
    # Settings
    "KnitSettings",
    "get_settings",
    # Errors
    "KnitError",
    "ComponentNotFoundError",
    "InvalidComponentError",
    "InvalidDependencyError",
    "RemoteAuthError",
    "RemoteNotFoundError",
    "RemoteStoreError",
    "ResourceLoadError",
    "StalledDependencyError",
]
