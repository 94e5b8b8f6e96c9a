"""Binding Resolver.

Turns a SpecNode tree plus a DataContext into a ResolvedNode tree of the
same shape. Bindings are either dotted paths (``tasks.data``), exact
templates (``{{tasks.selected.title}}``, typed value) or embedded templates
(``"Due {{task.due}}"``, string). Resolution never raises for missing data:
missing paths become None (or "" inside embedded templates) and the prop is
listed in ``ResolvedNode.unresolved``. Malformed expressions are reported as
BindingIssues on the result.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..core import get_logger
from ..spec.models import DataItem, ResolvedNode, SpecNode
from ..spec.registry import NodeTypeRegistry
from .context import MISSING, DataContext, lookup_path

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}")
_EXACT = re.compile(r"^\{\{([^{}]*)\}\}$")

# Literal props that may embed {{path}} templates
TEMPLATED_PROPS = frozenset({"text", "label", "title", "placeholder", "value"})

# Props that carry a list node's rows
LIST_DATA_PROPS = ("data", "items")

DEFAULT_LIST_TYPES = frozenset({"ListView", "Table"})

_ITEM_PREFIXES = ("item.", "row.")


class BindingSyntaxError(ValueError):
    """Malformed binding expression."""

    pass


@dataclass(frozen=True)
class BindingIssue:
    """A binding that could not be evaluated because it is malformed."""

    node_id: str
    prop: str
    expression: Any
    message: str


@dataclass(frozen=True)
class ResolutionResult:
    tree: ResolvedNode
    issues: tuple[BindingIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.issues


def _check_path(path: str) -> str:
    path = path.strip()
    if not path:
        raise BindingSyntaxError("Empty binding path")
    if "{" in path or "}" in path:
        raise BindingSyntaxError(f"Unbalanced braces in binding path '{path}'")
    if any(not segment.strip() for segment in path.split(".")):
        raise BindingSyntaxError(f"Empty segment in binding path '{path}'")
    return path


def _lookup(path: str, context: DataContext, item: DataItem | None) -> Any:
    """Item-scoped lookup first (``item.x``, ``row.x`` or a bare item field), then the context."""
    if item is not None:
        value = MISSING
        for prefix in _ITEM_PREFIXES:
            if path.startswith(prefix):
                value = lookup_path(item, path[len(prefix):])
                break
        else:
            if isinstance(item, Mapping) and path.split(".", 1)[0] in item:
                value = lookup_path(item, path)
        if value is not MISSING:
            return value
    return context.lookup(path)


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _evaluate(expr: Any, context: DataContext, item: DataItem | None, missing: list[str]) -> Any:
    if isinstance(expr, str):
        exact = _EXACT.match(expr.strip())
        if exact:
            path = _check_path(exact.group(1))
            value = _lookup(path, context, item)
            if value is MISSING:
                missing.append(path)
                return None
            return value

        if "{{" in expr or "}}" in expr:
            if "{{" in _PLACEHOLDER.sub("", expr) or "}}" in _PLACEHOLDER.sub("", expr):
                raise BindingSyntaxError(f"Unbalanced template '{expr}'")

            def substitute(match: re.Match) -> str:
                path = _check_path(match.group(1))
                value = _lookup(path, context, item)
                if value is MISSING:
                    missing.append(path)
                    return ""
                return "" if value is None else _format(value)

            return _PLACEHOLDER.sub(substitute, expr)

        path = _check_path(expr)
        value = _lookup(path, context, item)
        if value is MISSING:
            missing.append(path)
            return None
        return value

    if isinstance(expr, (list, tuple)):
        return [_evaluate(e, context, item, missing) for e in expr]

    if isinstance(expr, Mapping):
        return {key: _evaluate(value, context, item, missing) for key, value in expr.items()}

    return expr


def _resolve_templates(value: Any, context: DataContext, item: DataItem | None, missing: list[str]) -> Any:
    """Resolve only strings that contain ``{{``; other literals pass through."""
    if isinstance(value, str):
        return _evaluate(value, context, item, missing) if "{{" in value else value
    if isinstance(value, (list, tuple)):
        return [_resolve_templates(v, context, item, missing) for v in value]
    if isinstance(value, Mapping):
        return {k: _resolve_templates(v, context, item, missing) for k, v in value.items()}
    return value


def resolve_expression(expr: Any, context: DataContext, item: DataItem | None = None) -> Any:
    """
    Evaluate one binding expression.

    Args:
        expr: Path, template, or a list/dict of them
        context: Data context to read from
        item: Optional row for ``item.`` / ``row.`` scoped templates

    Returns:
        The resolved value, None (or "" in embedded templates) when missing

    Raises:
        BindingSyntaxError: If the expression is malformed
    """
    return _evaluate(expr, context, item, [])


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def correct_list_bindings(
    node: SpecNode,
    context: DataContext,
    list_types: frozenset[str] = DEFAULT_LIST_TYPES,
) -> SpecNode:
    """
    Rewrite bare source names on list nodes to ``<source>.data``.

    Planners often bind a list to ``"tasks"`` when the rows live under
    ``tasks.data``. Returns the same node object when nothing changes, and
    otherwise copies only the nodes on the paths to corrected nodes.
    """
    children = node.children
    new_children = None
    if children:
        corrected = tuple(correct_list_bindings(child, context, list_types) for child in children)
        if any(new is not old for new, old in zip(corrected, children)):
            new_children = corrected

    new_bindings = None
    if node.node_type in list_types:
        for prop in LIST_DATA_PROPS:
            expr = node.bindings.get(prop)
            if not isinstance(expr, str) or "." in expr or "{" in expr or not expr.strip():
                continue
            name = expr.strip()
            if _is_sequence(context.lookup(f"{name}.data")):
                new_bindings = dict(new_bindings or node.bindings)
                new_bindings[prop] = f"{name}.data"
                logger.debug("list_binding_corrected", node_id=node.id, prop=prop, source=name)

    if new_children is None and new_bindings is None:
        return node

    update: dict[str, Any] = {}
    if new_children is not None:
        update["children"] = new_children
    if new_bindings is not None:
        update["bindings"] = new_bindings
    return node.model_copy(update=update)


class BindingResolver:
    """Resolves SpecNode trees against a DataContext. Holds no per-pass state."""

    def __init__(self, registry: NodeTypeRegistry | None = None) -> None:
        if registry is not None:
            self.list_types = frozenset(name for name in registry.names() if registry.is_list(name))
        else:
            self.list_types = DEFAULT_LIST_TYPES

    def resolve(self, tree: SpecNode, context: DataContext) -> ResolutionResult:
        """
        Resolve a whole tree.

        Returns:
            ResolutionResult with a same-shape ResolvedNode tree and any syntax issues
        """
        issues: list[BindingIssue] = []
        corrected = correct_list_bindings(tree, context, self.list_types)
        resolved = self._resolve_node(corrected, context, None, issues)
        if issues:
            logger.warning("binding_issues", count=len(issues), first_node=issues[0].node_id)
        return ResolutionResult(tree=resolved, issues=tuple(issues))

    def resolve_node(self, node: SpecNode, context: DataContext, item: DataItem | None = None) -> ResolvedNode:
        """Resolve a subtree, optionally scoped to a list row."""
        corrected = correct_list_bindings(node, context, self.list_types)
        return self._resolve_node(corrected, context, item, [])

    def _resolve_node(
        self,
        node: SpecNode,
        context: DataContext,
        item: DataItem | None,
        issues: list[BindingIssue],
    ) -> ResolvedNode:
        props = dict(node.props)
        expressions = dict(node.bindings)
        unresolved: list[str] = []

        def evaluate(prop: str, expr: Any) -> Any:
            missing: list[str] = []
            try:
                value = _evaluate(expr, context, item, missing)
            except BindingSyntaxError as e:
                issues.append(BindingIssue(node.id, prop, expr, str(e)))
                unresolved.append(prop)
                return None
            if missing:
                unresolved.append(prop)
            return value

        for prop in TEMPLATED_PROPS.intersection(props):
            value = props[prop]
            if isinstance(value, str) and "{{" in value and prop not in node.bindings:
                expressions[prop] = value
                props[prop] = evaluate(prop, value)

        for prop, expr in node.bindings.items():
            props[prop] = evaluate(prop, expr)

        events = {}
        for kind, descriptor in node.events.items():
            if descriptor.payload:
                missing: list[str] = []
                try:
                    payload = _resolve_templates(descriptor.payload, context, item, missing)
                except BindingSyntaxError as e:
                    issues.append(BindingIssue(node.id, f"events.{kind.value}", descriptor.payload, str(e)))
                    payload = descriptor.payload
                descriptor = descriptor.model_copy(update={"payload": payload})
            events[kind] = descriptor

        children = None
        if node.children is not None:
            children = tuple(self._resolve_node(child, context, item, issues) for child in node.children)

        return ResolvedNode(
            id=node.id,
            node_type=node.node_type,
            props=props,
            bindings=expressions,
            events=events,
            children=children,
            unresolved=tuple(unresolved),
        )


def resolve(tree: SpecNode, context: DataContext, registry: NodeTypeRegistry | None = None) -> ResolutionResult:
    """Convenience wrapper around BindingResolver.resolve."""
    return BindingResolver(registry).resolve(tree, context)


def binding_roots(node: SpecNode | ResolvedNode) -> set[str]:
    """Top-level context names a node's bindings and templated props read."""
    roots: set[str] = set()

    def collect(expr: Any, template_only: bool) -> None:
        if isinstance(expr, str):
            if "{{" in expr:
                paths = [m.group(1).strip() for m in _PLACEHOLDER.finditer(expr)]
            elif template_only:
                return
            else:
                paths = [expr.strip()]
            for path in paths:
                if not path:
                    continue
                for prefix in _ITEM_PREFIXES:
                    if path.startswith(prefix):
                        break
                else:
                    roots.add(path.split(".", 1)[0])
        elif isinstance(expr, (list, tuple)):
            for e in expr:
                collect(e, template_only)
        elif isinstance(expr, Mapping):
            for e in expr.values():
                collect(e, template_only)

    for expr in node.bindings.values():
        collect(expr, False)
    for prop in TEMPLATED_PROPS.intersection(node.props):
        if prop not in node.bindings:
            collect(node.props[prop], True)
    return roots


__all__ = [
    "TEMPLATED_PROPS",
    "DEFAULT_LIST_TYPES",
    "BindingSyntaxError",
    "BindingIssue",
    "ResolutionResult",
    "BindingResolver",
    "correct_list_bindings",
    "resolve_expression",
    "resolve",
    "binding_roots",
]
