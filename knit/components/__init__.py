"""
Knit Components.

Component definitions, the Instance base class, handles and the
component registry.
"""

from .definition import (
    ComponentDefinition,
    ComponentHandle,
    Instance,
    index_from_url,
    is_component,
    is_instance,
    parse_index,
)
from .registry import ComponentRegistry

__all__ = [
    "ComponentDefinition",
    "ComponentHandle",
    "ComponentRegistry",
    "Instance",
    "index_from_url",
    "is_component",
    "is_instance",
    "parse_index",
]
