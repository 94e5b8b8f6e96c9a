"""Specification tree model, registry and parser."""

from .models import ActionDescriptor, DataItem, ResolvedNode, SpecNode, UIEvent, UIEventType
from .tree import (
    TreeError,
    walk,
    find_node,
    find_path,
    ancestors,
    node_ids,
    ensure_unique_ids,
    update_node,
    replace_node,
    add_child,
    remove_node,
)
from .registry import NodeTypeRegistry, NodeTypeSpec, default_registry
from .parser import SpecParser, parse_spec

__all__ = [
    "ActionDescriptor",
    "DataItem",
    "ResolvedNode",
    "SpecNode",
    "UIEvent",
    "UIEventType",
    "TreeError",
    "walk",
    "find_node",
    "find_path",
    "ancestors",
    "node_ids",
    "ensure_unique_ids",
    "update_node",
    "replace_node",
    "add_child",
    "remove_node",
    "NodeTypeRegistry",
    "NodeTypeSpec",
    "default_registry",
    "SpecParser",
    "parse_spec",
]
