"""
Component Registry.

Maps component indexes to definitions for the lifetime of a KnitContext.
Registration is single-flight: while a definition's one-time ``init`` hook
runs, concurrent registrations of the same index wait for it instead of
registering twice.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any

from knit.errors import ComponentNotFoundError
from knit.helpers import clone, integrate

from .definition import (
    ComponentDefinition,
    ComponentHandle,
    index_from_url,
    is_component_url,
)

if TYPE_CHECKING:
    from knit.runtime.context import KnitContext

logger = logging.getLogger(__name__)


class ComponentRegistry:
    """
    Registry of component definitions.

    Example:
        registry = context.components
        handle = await registry.register("components/chat-2.1.0.py", {"user": "john"})
        chat = await handle.instance()

        # Later, by index
        handle = await registry.register("chat-2-1-0")
    """

    def __init__(self, context: KnitContext):
        self._context = context
        self._components: dict[str, ComponentDefinition] = {}
        self._pending: dict[str, asyncio.Task] = {}

    async def register(
        self,
        ref: Any,
        default_config: dict[str, Any] | None = None,
    ) -> ComponentHandle:
        """
        Register a component and return a handle for it.

        Args:
            ref: Component index, component file URL, ComponentDefinition,
                definition dict, or an existing ComponentHandle
            default_config: Individual defaults layered over the
                definition's default configuration

        Returns:
            ComponentHandle for creating instances

        Raises:
            ComponentNotFoundError: If ref is an unregistered index
            InvalidComponentError: If ref does not describe a component
        """
        if isinstance(ref, ComponentHandle):
            base = ref.config
            definition = ref.definition
        else:
            definition = await self.resolve(ref)
            base = definition.config

        config = integrate(clone(default_config) if default_config else None, clone(base)) or {}
        return ComponentHandle(definition, config, self._context)

    async def resolve(self, ref: Any) -> ComponentDefinition:
        """Resolve any component reference to a registered definition."""
        if isinstance(ref, ComponentHandle):
            return ref.definition

        if isinstance(ref, str):
            if not is_component_url(ref):
                return await self._lookup(ref)

            index = index_from_url(ref)
            if index is not None and index in self._components:
                logger.debug(f"[components] Already registered: {index}")
                return self._components[index]

            loaded = await self._context.loader.load(ref)
            ref = loaded

        return await self._register_definition(ComponentDefinition.coerce(ref))

    def get(self, index: str) -> ComponentDefinition:
        """
        Get a registered definition by index.

        Raises:
            ComponentNotFoundError: If no definition is registered
        """
        definition = self._components.get(index)
        if definition is None:
            raise ComponentNotFoundError(index, self.indexes)
        return definition

    def has(self, index: str) -> bool:
        return index in self._components

    @property
    def indexes(self) -> list[str]:
        return list(self._components.keys())

    def clear(self) -> None:
        """Forget all registered components (for testing)."""
        self._components.clear()
        logger.debug("[components] Cleared all components")

    async def _lookup(self, index: str) -> ComponentDefinition:
        if index in self._components:
            return self._components[index]
        if index in self._pending:
            return await asyncio.shield(self._pending[index])
        raise ComponentNotFoundError(index, self.indexes)

    async def _register_definition(self, definition: ComponentDefinition) -> ComponentDefinition:
        index = definition.index

        existing = self._components.get(index)
        if existing is not None:
            return existing
        if index in self._pending:
            return await asyncio.shield(self._pending[index])

        task = asyncio.ensure_future(self._setup(definition))
        self._pending[index] = task
        try:
            return await asyncio.shield(task)
        finally:
            self._pending.pop(index, None)

    async def _setup(self, definition: ComponentDefinition) -> ComponentDefinition:
        if definition.init is not None:
            hook, definition.init = definition.init, None
            result = hook(definition)
            if inspect.isawaitable(result):
                await result

        self._components[definition.index] = definition
        logger.info(f"[components] Registered component: {definition.index}")
        return definition
