"""
Lazy instance handle.

A ``Proxy`` descriptor does not take part in its parent's resolution.
The assembler leaves a LazyInstance in the slot instead; forcing it
assembles and starts the instance and puts the real instance into the
slot the handle occupied.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from knit.helpers import assign_slot, clone

if TYPE_CHECKING:
    from knit.components import Instance

    from .assembler import Assembler

logger = logging.getLogger(__name__)


class LazyInstance:
    """
    Deferred instance with a single ``force`` operation.

    Example:
        menu = instance.menu             # LazyInstance
        menu = await menu.force()        # started Instance
        assert instance.menu is menu
    """

    def __init__(
        self,
        assembler: Assembler,
        component: Any,
        config: Any,
        *,
        owner: Any,
        slot: Any,
        parent: Instance | None = None,
    ):
        self.component = component
        self.config = config
        self._assembler = assembler
        self._owner = owner
        self._slot = slot
        self._parent = parent
        self._instance: Instance | None = None
        self._lock = asyncio.Lock()

    @property
    def forced(self) -> bool:
        return self._instance is not None

    async def force(self, config: dict[str, Any] | None = None) -> Instance:
        """
        Assemble and start the instance (only the first call does work).

        Args:
            config: Extra configuration integrated over the proxy's own
                configuration on the first call

        Returns:
            The started instance
        """
        async with self._lock:
            if self._instance is None:
                merged = clone(self.config)
                if config:
                    if isinstance(merged, dict):
                        merged.update(config)
                    elif merged is None:
                        merged = dict(config)
                instance = await self._assembler.start(
                    self.component, merged, parent=self._parent
                )
                assign_slot(self._owner, self._slot, instance)
                self._instance = instance
                logger.debug(f"[assembler] Forced lazy instance: {instance.index}")
            return self._instance

    def __repr__(self) -> str:
        state = self._instance.index if self._instance else "pending"
        return f"<LazyInstance {self.component!r} {state}>"
