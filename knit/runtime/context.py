"""
Knit Context.

Holds everything an assembly run shares: settings, the resource loader,
the component and store registries, the indexed store behind tier-2
datastores and the transports for remote datastores. Independent
contexts do not see each other's components, resources or datastores.

A default context is created lazily for the module-level functions.

Usage:
    async with KnitContext() as knit:
        chat = await knit.start("components/chat-2.1.0.py", {"user": "john"})
        greeting = await knit.get({"store_name": "chat"}, "greeting.text")

    # Or through the default context
    from knit import start, get
    chat = await start("components/chat-2.1.0.py")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from knit.components import ComponentHandle, ComponentRegistry, Instance
from knit.config import KnitSettings, get_settings
from knit.helpers import deep_value
from knit.store import (
    Datastore,
    IndexedStore,
    SocketFactory,
    SQLiteIndexedStore,
    StoreRegistry,
    open_websocket,
)

from .assembler import Assembler
from .loaders import ResourceLoader

logger = logging.getLogger(__name__)


class KnitContext:
    """
    Explicit context for loading, assembling and data access.

    Example:
        context = KnitContext(settings=KnitSettings(dependency_timeout=5))
        handle = await context.register("components/chat-2.1.0.py")
        chat = await handle.instance({"user": "john"})
        await context.aclose()
    """

    def __init__(
        self,
        settings: KnitSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        base_dir: str | Path | None = None,
        indexed_store: IndexedStore | None = None,
        socket_factory: SocketFactory | None = None,
    ):
        """
        Initialize context.

        Args:
            settings: Runtime settings (defaults to environment settings)
            transport: httpx transport for resources and remote datastores
            base_dir: Directory relative resource paths are resolved against
            indexed_store: Backing store for tier-2 datastores
            socket_factory: Opens realtime connections (defaults to aiohttp)
        """
        self.settings = settings or get_settings()
        self.transport = transport
        self.indexed_store = indexed_store or SQLiteIndexedStore(self.settings.indexed_db_path)
        self.socket_factory = socket_factory or open_websocket

        self.loader = ResourceLoader(settings=self.settings, transport=transport, base_dir=base_dir)
        self.components = ComponentRegistry(self)
        self.stores = StoreRegistry(self)
        self.assembler = Assembler(self)

    async def __aenter__(self) -> KnitContext:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Resources and components
    # =========================================================================

    async def load(self, *resources: Any) -> Any:
        """Load resources (see ResourceLoader.load)."""
        return await self.loader.load(*resources)

    async def register(self, component: Any, default_config: dict[str, Any] | None = None) -> ComponentHandle:
        """Register a component and get a handle with individual defaults."""
        return await self.components.register(component, default_config)

    async def instance(self, component: Any, config: Any = None) -> Instance:
        """Assemble an instance."""
        return await self.assembler.assemble(component, config)

    async def start(self, component: Any, config: Any = None) -> Instance:
        """Assemble an instance and call its start hook."""
        return await self.assembler.start(component, config)

    # =========================================================================
    # Datastores
    # =========================================================================

    async def store(self, settings: Any = None) -> Datastore:
        """Get the datastore for the settings (created and initialized on first use)."""
        return await self.stores.get_or_create(settings)

    async def get(self, settings: Any, key: Any = None) -> Any:
        """
        Get a dataset (or query result) from a datastore.

        A string key may carry a property path: "greeting.text" fetches
        dataset "greeting" and returns its "text" property.
        """
        store = await self.store(settings)
        if isinstance(key, str) and "." in key:
            key, path = key.split(".", 1)
            return deep_value(await store.get(key), path)
        return await store.get(key)

    async def set(self, settings: Any, data: dict[str, Any]) -> dict[str, Any] | None:
        """Create or update a dataset in a datastore."""
        store = await self.store(settings)
        return await store.set(data)

    async def delete(self, settings: Any, key: Any = None) -> Any:
        """Delete a dataset from a datastore."""
        store = await self.store(settings)
        return await store.delete(key)

    # =========================================================================
    # Teardown
    # =========================================================================

    def clear(self) -> None:
        """Forget cached resources and all datastores."""
        self.loader.clear()
        self.stores.clear()
        logger.info("[context] Cleared resource cache and datastores")

    async def aclose(self) -> None:
        """Close connections held by datastores, the loader and the indexed store."""
        await self.stores.close()
        await self.loader.close()
        await self.indexed_store.close()


# =============================================================================
# Default context
# =============================================================================

_context: KnitContext | None = None


def get_context() -> KnitContext:
    """
    Get the default context.

    Creates the context on first access (lazy initialization).
    """
    global _context
    if _context is None:
        _context = KnitContext()
    return _context


def reset_context() -> None:
    """
    Reset the default context (for testing).

    Open connections are not closed; use ``await get_context().aclose()``
    first when that matters.
    """
    global _context
    if _context is not None:
        _context.clear()
    _context = None


async def load(*resources: Any) -> Any:
    return await get_context().load(*resources)


async def register(component: Any, default_config: dict[str, Any] | None = None) -> ComponentHandle:
    return await get_context().register(component, default_config)


async def instance(component: Any, config: Any = None) -> Instance:
    return await get_context().instance(component, config)


async def start(component: Any, config: Any = None) -> Instance:
    return await get_context().start(component, config)


async def store(settings: Any = None) -> Datastore:
    return await get_context().store(settings)


async def get(settings: Any, key: Any = None) -> Any:
    return await get_context().get(settings, key)


async def set(settings: Any, data: dict[str, Any]) -> dict[str, Any] | None:
    return await get_context().set(settings, data)


async def delete(settings: Any, key: Any = None) -> Any:
    return await get_context().delete(settings, key)


def clear() -> None:
    """Clear the default context's resource cache and datastores."""
    get_context().clear()
