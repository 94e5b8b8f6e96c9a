"""Component adapters: resolved trees to presentation output."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from ..core import get_logger
from ..engine.bindings import BindingSyntaxError, resolve_expression
from ..engine.context import DataContext
from ..engine.render_cache import RenderCache, RenderKey
from ..spec.models import ResolvedNode, SpecNode, UIEvent, UIEventType
from ..spec.tree import walk

logger = get_logger(__name__)

Dispatch = Callable[[UIEvent], Any]


@runtime_checkable
class ComponentAdapter(Protocol):
    """Maps resolved trees to output. ``render`` may return an awaitable."""

    def render(self, tree: ResolvedNode, handle: Any, dispatch: Dispatch) -> Any:
        ...

    def render_placeholder(self, tree: SpecNode | None, handle: Any) -> Any:
        ...

    def render_error(self, message: str, handle: Any) -> Any:
        ...


class CachedComponentAdapter(ABC):
    """
    Base adapter that renders bottom-up through a RenderCache.

    A cache hit for a node reuses its whole rendered subtree, so invalidation
    must cover the ancestors of changed nodes (the Action Router does this).
    """

    def __init__(self, cache: RenderCache | None = None) -> None:
        self.cache = cache
        self._dispatch: Dispatch | None = None

    def attach_cache(self, cache: RenderCache) -> None:
        self.cache = cache

    def render(self, tree: ResolvedNode, handle: Any, dispatch: Dispatch) -> Any:
        self._dispatch = dispatch
        output = self._render(tree, handle, dispatch)
        if isinstance(handle, list):
            handle.append(output)
        return output

    def _render(self, node: ResolvedNode, handle: Any, dispatch: Dispatch) -> Any:
        key = RenderKey.for_node(node)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        children = [self._render(child, handle, dispatch) for child in node.children or ()]
        output = self.render_node(node, children, handle, dispatch)
        if self.cache is not None:
            self.cache.put(key, output)
        return output

    def interact(self, node_id: str, event_type: UIEventType | str = UIEventType.CLICK, **payload: Any) -> Any:
        """
        Raise a UI event through the dispatch of the last render.

        Returns whatever dispatch returns (the engine returns an awaitable).
        """
        if self._dispatch is None:
            raise RuntimeError("Nothing rendered yet")
        event = UIEvent(type=event_type, node_id=node_id, payload=payload or None)
        return self._dispatch(event)

    @abstractmethod
    def render_node(self, node: ResolvedNode, children: list[Any], handle: Any, dispatch: Dispatch) -> Any:
        """Render one node given its already rendered children."""

    @abstractmethod
    def render_placeholder(self, tree: SpecNode | None, handle: Any) -> Any:
        ...

    @abstractmethod
    def render_error(self, message: str, handle: Any) -> Any:
        ...


_EMPTY_CONTEXT = DataContext()


def _field_names(fields: Any) -> list[tuple[str, str]]:
    names = []
    for f in fields or ():
        if isinstance(f, str):
            names.append((f, f))
        elif isinstance(f, Mapping) and f.get("key"):
            names.append((f["key"], f.get("label", f["key"])))
    return names


class TextComponentAdapter(CachedComponentAdapter):
    """
    Plain-text renderer.

    Output is an indented outline, one line per visible node (list rows get
    a line each). Useful for terminals, logs and tests.
    """

    indent = "  "

    def render_node(self, node: ResolvedNode, children: list[str], handle: Any, dispatch: Dispatch) -> str:
        if not RenderKey.for_node(node).visible:
            return ""

        lines = [self.describe(node)]
        lines.extend(self._rows(node))
        for child in children:
            if child:
                lines.extend(f"{self.indent}{line}" for line in child.splitlines())
        return "\n".join(lines)

    def describe(self, node: ResolvedNode) -> str:
        props = node.props
        match node.node_type:
            case "Text" | "Heading" | "Badge":
                return str(props.get("text", ""))
            case "Header":
                return f"# {props.get('title', '')}"
            case "Button":
                return f"[{props.get('label', '')}]"
            case "Input" | "Textarea" | "Select" | "RadioGroup":
                label = props.get("label") or props.get("name", node.id)
                return f"{label}: {props.get('value') if props.get('value') is not None else ''}"
            case "Checkbox":
                mark = "x" if props.get("checked") or props.get("value") is True else " "
                return f"[{mark}] {props.get('label') or props.get('name', node.id)}"
            case "Detail" | "Dialog" | "Card":
                title = props.get("title") or node.id
                data = props.get("data")
                if isinstance(data, Mapping):
                    fields = _field_names(props.get("fields")) or [(k, k) for k in data]
                    details = ", ".join(f"{label}: {data.get(key)}" for key, label in fields)
                    return f"{title} ({details})"
                return str(title)
            case _:
                title = props.get("title")
                return f"{node.node_type}#{node.id}" + (f" {title}" if title else "")

    def _rows(self, node: ResolvedNode) -> list[str]:
        data = node.props.get("data", node.props.get("items"))
        if not isinstance(data, (list, tuple)):
            return []
        if not data:
            return [f"{self.indent}{node.props.get('emptyText', '(empty)')}"]

        template = node.props.get("itemTemplate")
        fields = _field_names(node.props.get("fields"))
        rows = []
        for item in data:
            if template:
                try:
                    text = resolve_expression(template, _EMPTY_CONTEXT, item)
                except BindingSyntaxError as e:
                    logger.warning("item_template_invalid", node_id=node.id, error=str(e))
                    text = ""
            elif fields and isinstance(item, Mapping):
                text = " | ".join(str(item.get(key, "")) for key, _ in fields)
            else:
                text = str(item)
            rows.append(f"{self.indent}- {text}")
        return rows

    def render_placeholder(self, tree: SpecNode | None, handle: Any) -> str:
        if tree is None:
            output = "Loading..."
        else:
            outline = ", ".join(f"{node.node_type}#{node.id}" for node in walk(tree))
            output = f"Loading... ({outline})"
        if isinstance(handle, list):
            handle.append(output)
        return output

    def render_error(self, message: str, handle: Any) -> str:
        output = f"Error: {message}"
        if isinstance(handle, list):
            handle.append(output)
        return output


__all__ = [
    "Dispatch",
    "ComponentAdapter",
    "CachedComponentAdapter",
    "TextComponentAdapter",
]
