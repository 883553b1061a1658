"""
Instance Assembler.

Turns a component reference plus configuration into a fully wired,
fully initialized instance graph.

Resolution of one ``assemble()`` call:

1. Resolve the component definition (loading its file if needed) and the
   configuration (a ``key`` property or a descriptor as configuration is
   resolved first and the remaining properties are integrated over it).
2. Create the instance: definition defaults, then caller configuration.
3. Scan the instance's configuration, descending into plain dicts and
   lists but never into instances, definitions, handles or datastores.
   Every descriptor found becomes a job of the current level, except:
     - InstanceRef: queued on the waiter queue (breadth-first deferral)
     - Proxy: replaced by a LazyInstance right away, outside resolution
4. Run all jobs of the level concurrently and wait for all of them.
5. While the waiter queue is not empty, take its oldest entry and build
   that nested instance the same way (steps 1-4). Its own nested
   instances join the end of the queue, so the tree is built level by
   level.
6. Lifecycle pass over every instance and datastore discovered:
   ``init`` in discovery order, then ``ready`` children-first (post-order),
   so a parent's ready hook sees fully ready children.
7. Start the instances requested with the auto-start descriptor.

Usage:
    assembler = context.assembler
    app = await assembler.assemble("components/app-1.0.0.py", {"user": "john"})
    app = await assembler.start("app-1-0-0")
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any

from knit.components import ComponentDefinition, ComponentHandle, Instance
from knit.components.definition import RESERVED
from knit.dependencies import (
    ComponentRef,
    Delete,
    Dependency,
    Get,
    InstanceRef,
    Load,
    Proxy,
    Set,
    Store,
    as_dependency,
)
from knit.errors import InvalidDependencyError, StalledDependencyError
from knit.helpers import assign_slot, clone, integrate
from knit.lifecycle import call_hook
from knit.store import Datastore

from .lazy import LazyInstance

if TYPE_CHECKING:
    from .context import KnitContext

logger = logging.getLogger(__name__)

# Values that are already resolved and never scanned for descriptors
OPAQUE_TYPES = (Instance, ComponentDefinition, ComponentHandle, Datastore, LazyInstance)


class Assembler:
    """
    Builds instances for a KnitContext.

    Each assemble() call is an independent resolution run; registries and
    the resource cache are shared through the context.
    """

    def __init__(self, context: KnitContext):
        self._context = context

    @property
    def context(self) -> KnitContext:
        return self._context

    async def assemble(
        self,
        component: Any,
        config: Any = None,
        *,
        parent: Instance | None = None,
    ) -> Instance:
        """
        Assemble an instance and all of its dependencies.

        Args:
            component: Component index, file URL, definition, definition
                dict or ComponentHandle
            config: Configuration (dict, or a load/get descriptor that
                provides it)
            parent: Parent instance for the back-reference

        Returns:
            The root instance, after init and ready hooks have run

        Raises:
            ComponentNotFoundError: Unknown component index
            StalledDependencyError: A dependency exceeded dependency_timeout
            KnitError: Any other resolution failure
        """
        run = _Resolution(self)
        root = await run.build(component, config, parent)
        await run.drain()
        await run.finish()
        logger.debug(f"[assembler] Assembled {root.index} ({len(run.nodes)} nodes)")
        return root

    async def start(
        self,
        component: Any,
        config: Any = None,
        *,
        parent: Instance | None = None,
    ) -> Instance:
        """Assemble an instance, then call its ``start`` hook if it has one."""
        instance = await self.assemble(component, config, parent=parent)
        await start_instance(instance)
        return instance


async def start_instance(instance: Instance) -> None:
    hook = getattr(instance, "start", None)
    if callable(hook):
        await call_hook(hook)


class _Resolution:
    """State of one assemble() run."""

    def __init__(self, assembler: Assembler):
        self.assembler = assembler
        self.context = assembler.context
        self.root: Instance | None = None
        self.nodes: list[Any] = []
        self.children: dict[Any, list[Any]] = {}
        self.waiters: deque[tuple[Any, Any, InstanceRef, Instance]] = deque()
        self.auto_start: list[Instance] = []

    # =========================================================================
    # Building
    # =========================================================================

    async def build(self, component: Any, config: Any, parent: Instance | None) -> Instance:
        config = await self._resolve_config(config)

        if isinstance(component, ComponentHandle):
            definition = component.definition
            config = component._merge(config)
        else:
            definition = await self.context.components.resolve(component)
            config = integrate(config, clone(definition.config)) or {}

        given_parent = config.pop("parent", None)
        if isinstance(given_parent, Instance):
            parent = given_parent

        instance = definition.new_instance()
        if parent is not None:
            instance.parent = parent
        for name, value in config.items():
            if name in RESERVED:
                logger.warning(f"[assembler] Ignored reserved config property '{name}' for {instance.index}")
                continue
            setattr(instance, name, value)

        self._discover(instance, parent)
        logger.debug(f"[assembler] Created instance {instance.index}")

        jobs: list[tuple[Any, Any, Dependency]] = []
        for name, value in instance.config_items():
            self._scan(instance, name, value, instance, jobs)
        await asyncio.gather(*(self._run_job(owner, slot, dep, instance) for owner, slot, dep in jobs))

        return instance

    async def drain(self) -> None:
        """Build queued nested instances, oldest first."""
        while self.waiters:
            owner, slot, dependency, parent = self.waiters.popleft()
            child = await self._guard(dependency, self.build(dependency.component, dependency.config, parent))
            assign_slot(owner, slot, child)
            if dependency.start:
                self.auto_start.append(child)

    def _discover(self, node: Any, parent: Any) -> None:
        self.nodes.append(node)
        if self.root is None:
            self.root = node
        elif parent is not None:
            self.children.setdefault(parent, []).append(node)

    def _scan(self, owner: Any, slot: Any, value: Any, instance: Instance, jobs: list) -> None:
        if isinstance(value, OPAQUE_TYPES):
            return

        dependency = as_dependency(value)
        if dependency is None:
            if isinstance(value, dict):
                for key, item in list(value.items()):
                    self._scan(value, key, item, instance, jobs)
            elif isinstance(value, list):
                for i, item in enumerate(list(value)):
                    self._scan(value, i, item, instance, jobs)
            return

        if isinstance(dependency, InstanceRef):
            self.waiters.append((owner, slot, dependency, instance))
        elif isinstance(dependency, Proxy):
            assign_slot(
                owner,
                slot,
                LazyInstance(
                    self.assembler,
                    dependency.component,
                    dependency.config,
                    owner=owner,
                    slot=slot,
                    parent=instance,
                ),
            )
        else:
            jobs.append((owner, slot, dependency))

    async def _run_job(self, owner: Any, slot: Any, dependency: Dependency, instance: Instance) -> None:
        result = await self._guard(dependency, self._dispatch(dependency, instance))
        assign_slot(owner, slot, result)

    async def _dispatch(self, dependency: Dependency, instance: Instance) -> Any:
        context = self.context

        if isinstance(dependency, Load):
            return await context.loader.load(*dependency.resources)

        if isinstance(dependency, ComponentRef):
            defaults = dict(dependency.config or {})
            defaults["parent"] = instance
            return await context.components.register(dependency.component, defaults)

        if isinstance(dependency, Store):
            store = await context.stores.get_or_create(dependency.settings, delayed=True)
            if store not in self.nodes:
                self._discover(store, instance)
            return store

        if isinstance(dependency, Get):
            return await context.get(dependency.settings, dependency.key)

        if isinstance(dependency, Set):
            return await context.set(dependency.settings, dependency.data)

        if isinstance(dependency, Delete):
            return await context.delete(dependency.settings, dependency.key)

        raise InvalidDependencyError(f"Cannot resolve dependency: {dependency!r}", dependency)

    async def _guard(self, dependency: Any, awaitable: Any) -> Any:
        timeout = self.context.settings.dependency_timeout
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[assembler] Dependency stalled after {timeout}s: {dependency!r}")
            raise StalledDependencyError(dependency, timeout) from None

    # =========================================================================
    # Configuration
    # =========================================================================

    async def _resolve_config(self, config: Any) -> dict[str, Any]:
        if config is None:
            return {}

        dependency = as_dependency(config)
        if dependency is not None:
            return await self._resolve_config(await self._config_source(dependency))

        if not isinstance(config, dict):
            raise InvalidDependencyError(f"Configuration must be a dict: {config!r}", config)

        config = clone(config)
        key = config.get("key")
        source = as_dependency(key)
        if source is not None:
            key = await self._config_source(source)
        elif not isinstance(key, dict):
            return config

        del config["key"]
        base = await self._resolve_config(key)
        base.pop("key", None)
        return integrate(config, base) or {}

    async def _config_source(self, dependency: Dependency) -> Any:
        if isinstance(dependency, Load):
            result = await self._guard(dependency, self.context.loader.load(*dependency.resources))
            return clone(result)
        if isinstance(dependency, Get):
            return await self._guard(dependency, self.context.get(dependency.settings, dependency.key))
        raise InvalidDependencyError(
            f"Only load and get descriptors can provide a configuration: {dependency!r}",
            dependency,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def finish(self) -> None:
        for node in self.nodes:
            await node.run_hook("init")
        for node in self._post_order(self.root):
            await node.run_hook("ready")
        for instance in self.auto_start:
            await start_instance(instance)

    def _post_order(self, node: Any) -> list[Any]:
        order = []
        for child in self.children.get(node, []):
            order.extend(self._post_order(child))
        order.append(node)
        return order
