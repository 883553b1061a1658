"""
Knit Runtime.

Resource loading, instance assembly and the context tying them to the
component and store registries.
"""

from .assembler import Assembler
from .context import KnitContext, get_context, reset_context
from .lazy import LazyInstance
from .loaders import Resource, ResourceLoader

__all__ = [
    "Assembler",
    "KnitContext",
    "LazyInstance",
    "Resource",
    "ResourceLoader",
    "get_context",
    "reset_context",
]
