"""
One-time lifecycle hooks.

Instances and datastores both take part in the assembler's lifecycle
pass. Each hook (``init``, ``ready``) runs at most once per object; the
object remembers which hooks have finished instead of deleting methods.
"""

from __future__ import annotations

import inspect
from typing import Any


class Lifecycle:
    """Mixin tracking which one-time hooks have already run."""

    _finished_hooks: set[str]

    def has_pending_hook(self, name: str) -> bool:
        finished = self.__dict__.setdefault("_finished_hooks", set())
        return name not in finished and callable(getattr(self, name, None))

    def mark_hook_done(self, name: str) -> None:
        self.__dict__.setdefault("_finished_hooks", set()).add(name)

    async def run_hook(self, name: str) -> bool:
        """
        Run a one-time hook if it exists and has not run yet.

        Returns:
            True if the hook ran
        """
        if not self.has_pending_hook(name):
            return False
        self.mark_hook_done(name)
        await call_hook(getattr(self, name))
        return True


async def call_hook(hook: Any, *args: Any) -> Any:
    """Call a sync or async hook."""
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
