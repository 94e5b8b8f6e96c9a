"""Action kinds and data mutation executors.

Every action attached to a node's event is one of ``ActionKind``. Replan
and partial-update actions are handled by the engine through the planner;
all other actions are data mutations run here. An executor takes the
current DataContext and returns a new one together with the top-level
context names it wrote, which drive render cache invalidation.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..core import get_logger
from ..spec.models import DataItem, ResolvedNode, UIEvent
from .context import VISIBILITY, DataContext, SourceEntry, split_path

logger = get_logger(__name__)


class RoutingError(Exception):
    """Event cannot be routed: unknown action, missing node, target or item."""

    pass


class ActionKind(str, Enum):
    FULL_REFRESH = "FULL_REFRESH"
    UPDATE_NODE = "UPDATE_NODE"
    UPDATE_DATA = "UPDATE_DATA"
    ADD_DROPDOWN = "ADD_DROPDOWN"
    SHOW_DETAIL = "SHOW_DETAIL"
    HIDE_DETAIL = "HIDE_DETAIL"
    HIDE_DIALOG = "HIDE_DIALOG"
    SAVE_ITEM = "SAVE_ITEM"
    TOGGLE_STATE = "TOGGLE_STATE"
    UPDATE_FORM = "UPDATE_FORM"
    NAVIGATE = "NAVIGATE"
    OPEN_DIALOG = "OPEN_DIALOG"
    CLOSE_DIALOG = "CLOSE_DIALOG"
    UPDATE_CONTEXT = "UPDATE_CONTEXT"
    ADD_ITEM = "ADD_ITEM"
    DELETE_ITEM = "DELETE_ITEM"
    SELECT_ITEM = "SELECT_ITEM"

    @classmethod
    def parse(cls, name: "str | ActionKind") -> "ActionKind":
        """
        Raises:
            RoutingError: If ``name`` is not a known action
        """
        if isinstance(name, cls):
            return name
        key = str(name).strip().upper()
        key = _ACTION_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise RoutingError(f"Unknown action kind: {name!r}") from None


_ACTION_ALIASES = {
    "SHOW_DIALOG": "SHOW_DETAIL",
    "SAVE_TASK_CHANGES": "SAVE_ITEM",
}


class RouteKind(str, Enum):
    MUTATION = "mutation"
    FULL_REPLAN = "full_replan"
    PARTIAL = "partial"
    NONE = "none"


FULL_REPLAN_ACTIONS = frozenset({ActionKind.FULL_REFRESH, ActionKind.NAVIGATE})
PARTIAL_ACTIONS = frozenset({ActionKind.UPDATE_NODE, ActionKind.ADD_DROPDOWN, ActionKind.UPDATE_FORM})


def classify(kind: ActionKind, enable_partial_updates: bool = True) -> RouteKind:
    if kind in FULL_REPLAN_ACTIONS:
        return RouteKind.FULL_REPLAN
    if kind in PARTIAL_ACTIONS:
        return RouteKind.PARTIAL if enable_partial_updates else RouteKind.FULL_REPLAN
    return RouteKind.MUTATION


@dataclass(frozen=True)
class ActionRequest:
    """A routed action as executors see it."""

    kind: ActionKind
    event: UIEvent
    target: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    node: ResolvedNode | None = None
    target_node: ResolvedNode | None = None


@dataclass(frozen=True)
class MutationResult:
    context: DataContext
    mutated: frozenset[str] = frozenset()


Executor = Callable[[ActionRequest, DataContext], MutationResult]


def _bound_source(node: ResolvedNode | None, context: DataContext) -> str | None:
    if node is None:
        return None
    for prop in ("data", "items"):
        expr = node.bindings.get(prop)
        if isinstance(expr, str) and expr.strip():
            root = split_path(expr.strip().strip("{}").strip())[0]
            if context.entry(root) is not None:
                return root
    return None


def source_of(request: ActionRequest, context: DataContext, required: bool = True) -> str | None:
    """
    Source an action applies to.

    Taken from ``payload.source``, else the data binding of the originating
    node, else that of the target node, else the only source in the context.
    """
    name = request.payload.get("source")
    if isinstance(name, str):
        if context.entry(name) is None:
            raise RoutingError(f"Unknown data source '{name}'")
        return name

    name = _bound_source(request.node, context) or _bound_source(request.target_node, context)
    if name is None:
        sources = context.source_names()
        if len(sources) == 1:
            name = sources[0]

    if name is None and required:
        raise RoutingError(f"Cannot determine data source for {request.kind.value}")
    return name


def _same_item(a: Any, b: Any) -> bool:
    if isinstance(a, Mapping) and isinstance(b, Mapping) and "id" in a and "id" in b:
        return str(a["id"]) == str(b["id"])
    return a == b


def _item_index(request: ActionRequest, entry: SourceEntry) -> int:
    payload = request.payload
    if isinstance(payload.get("item"), Mapping):
        probe = payload["item"]
        matches = [i for i, row in enumerate(entry.data) if _same_item(row, probe)]
    elif "itemId" in payload or "id" in payload:
        wanted = str(payload.get("itemId", payload.get("id")))
        matches = [
            i for i, row in enumerate(entry.data)
            if isinstance(row, Mapping) and str(row.get("id")) == wanted
        ]
    elif isinstance(payload.get("index"), int) and 0 <= payload["index"] < len(entry.data):
        matches = [payload["index"]]
    else:
        raise RoutingError(f"{request.kind.value} needs an item, itemId or index in its payload")

    if not matches:
        raise RoutingError(f"Item not found for {request.kind.value}: {dict(payload)}")
    return matches[0]


def _find_item(request: ActionRequest, entry: SourceEntry) -> DataItem:
    return entry.data[_item_index(request, entry)]


def _require_target(request: ActionRequest) -> str:
    if not request.target:
        raise RoutingError(f"{request.kind.value} requires a target")
    return request.target


def select_item(request: ActionRequest, context: DataContext) -> MutationResult:
    """SELECT_ITEM / SHOW_DETAIL: set ``<source>.selected``."""
    name = source_of(request, context)
    item = _find_item(request, context.entry(name))
    context = context.set_path([name, "selected"], item)
    mutated = {name}
    if request.kind is ActionKind.SHOW_DETAIL and request.target:
        context = context.set_path([VISIBILITY, request.target], True)
        mutated.add(VISIBILITY)
    return MutationResult(context, frozenset(mutated))


def hide_detail(request: ActionRequest, context: DataContext) -> MutationResult:
    name = source_of(request, context)
    context = context.set_path([name, "selected"], None)
    mutated = {name}
    if request.target:
        context = context.set_path([VISIBILITY, request.target], False)
        mutated.add(VISIBILITY)
    return MutationResult(context, frozenset(mutated))


def set_dialog(request: ActionRequest, context: DataContext) -> MutationResult:
    """OPEN_DIALOG / CLOSE_DIALOG / HIDE_DIALOG: ``visibility.<target>``."""
    target = _require_target(request)
    visible = request.kind is ActionKind.OPEN_DIALOG
    context = context.set_path([VISIBILITY, target], visible)
    mutated = {VISIBILITY}
    if request.kind is ActionKind.HIDE_DIALOG:
        name = source_of(request, context, required=False)
        if name is not None:
            context = context.set_path([name, "selected"], None)
            mutated.add(name)
    return MutationResult(context, frozenset(mutated))


def update_data(request: ActionRequest, context: DataContext) -> MutationResult:
    path = request.payload.get("path") or request.target
    if not path:
        raise RoutingError("UPDATE_DATA requires a path or target")
    value = request.payload.get("value")
    try:
        context = context.set_path(path, value)
    except KeyError as e:
        raise RoutingError(f"Cannot update '{path}': {e}") from e
    return MutationResult(context, frozenset({split_path(path)[0]}))


def update_context(request: ActionRequest, context: DataContext) -> MutationResult:
    updates = request.payload.get("updates")
    if not isinstance(updates, Mapping):
        updates = {k: v for k, v in request.payload.items() if k != "source"}
    if not updates:
        raise RoutingError("UPDATE_CONTEXT payload has no updates")

    mutated = set()
    for path, value in updates.items():
        try:
            context = context.set_path(path, value)
        except KeyError as e:
            raise RoutingError(f"Cannot update '{path}': {e}") from e
        mutated.add(split_path(path)[0])
    return MutationResult(context, frozenset(mutated))


def toggle_state(request: ActionRequest, context: DataContext) -> MutationResult:
    """Flip a boolean at ``payload.path``/``target``, or ``payload.field`` of a list item."""
    field_name = request.payload.get("field")
    if not field_name:
        path = request.payload.get("path") or request.target
        if not path:
            raise RoutingError("TOGGLE_STATE requires a path, target or field")
        try:
            context = context.set_path(path, not context.get_path(path))
        except KeyError as e:
            raise RoutingError(f"Cannot toggle '{path}': {e}") from e
        return MutationResult(context, frozenset({split_path(path)[0]}))

    name = source_of(request, context)
    entry = context.entry(name)
    index = _item_index(request, entry)
    item = entry.data[index]
    toggled = {**item, field_name: not item.get(field_name)}
    data = list(entry.data)
    data[index] = toggled
    context = context.set_path([name, "data"], data)
    if entry.selected is not None and _same_item(entry.selected, item):
        context = context.set_path([name, "selected"], toggled)
    return MutationResult(context, frozenset({name}))


def add_item(request: ActionRequest, context: DataContext) -> MutationResult:
    name = source_of(request, context)
    item = request.payload.get("item")
    if not isinstance(item, Mapping):
        item = {k: v for k, v in request.payload.items() if k != "source"}
    if not item:
        raise RoutingError("ADD_ITEM payload has no item")
    data = [*context.entry(name).data, dict(item)]
    context = context.set_path([name, "data"], data)
    return MutationResult(context, frozenset({name}))


def delete_item(request: ActionRequest, context: DataContext) -> MutationResult:
    name = source_of(request, context)
    entry = context.entry(name)
    index = _item_index(request, entry)
    removed = entry.data[index]
    data = [row for i, row in enumerate(entry.data) if i != index]
    context = context.set_path([name, "data"], data)
    if entry.selected is not None and _same_item(entry.selected, removed):
        context = context.set_path([name, "selected"], None)
    return MutationResult(context, frozenset({name}))


def save_item(request: ActionRequest, context: DataContext) -> MutationResult:
    """Write the selected item (plus ``payload.changes``) back into its source and clear the selection."""
    name = source_of(request, context)
    entry = context.entry(name)
    base = entry.selected
    if base is None:
        base = _find_item(request, entry)
    changes = request.payload.get("changes") or {}
    saved = {**base, **changes}

    data = list(entry.data)
    for index, row in enumerate(data):
        if _same_item(row, base):
            data[index] = saved
            break
    else:
        data.append(saved)

    context = context.set_path([name, "data"], data)
    context = context.set_path([name, "selected"], None)
    mutated = {name}
    if request.target:
        context = context.set_path([VISIBILITY, request.target], False)
        mutated.add(VISIBILITY)
    return MutationResult(context, frozenset(mutated))


EXECUTORS: dict[ActionKind, Executor] = {
    ActionKind.SELECT_ITEM: select_item,
    ActionKind.SHOW_DETAIL: select_item,
    ActionKind.HIDE_DETAIL: hide_detail,
    ActionKind.OPEN_DIALOG: set_dialog,
    ActionKind.CLOSE_DIALOG: set_dialog,
    ActionKind.HIDE_DIALOG: set_dialog,
    ActionKind.UPDATE_DATA: update_data,
    ActionKind.UPDATE_CONTEXT: update_context,
    ActionKind.TOGGLE_STATE: toggle_state,
    ActionKind.ADD_ITEM: add_item,
    ActionKind.DELETE_ITEM: delete_item,
    ActionKind.SAVE_ITEM: save_item,
}


def execute(request: ActionRequest, context: DataContext) -> MutationResult:
    """
    Run the data mutation for ``request``.

    Raises:
        RoutingError: If the action is not a mutation or cannot be applied
    """
    executor = EXECUTORS.get(request.kind)
    if executor is None:
        raise RoutingError(f"{request.kind.value} is not a data mutation")
    result = executor(request, context)
    logger.debug(
        "action_executed",
        action=request.kind.value,
        node_id=request.event.node_id,
        mutated=sorted(result.mutated),
    )
    return result


__all__ = [
    "RoutingError",
    "ActionKind",
    "RouteKind",
    "FULL_REPLAN_ACTIONS",
    "PARTIAL_ACTIONS",
    "classify",
    "ActionRequest",
    "MutationResult",
    "Executor",
    "EXECUTORS",
    "source_of",
    "execute",
]
