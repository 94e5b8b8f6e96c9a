"""Engine state and its reducer.

All engine state changes go through ``reduce``, which returns a new
EngineState and never mutates the old one.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from ..spec.models import ResolvedNode, SpecNode, UIEvent, UIEventType
from ..spec.tree import add_child, ensure_unique_ids, remove_node, replace_node
from .context import DataContext
from .state import INITIAL_STATUS, EngineStatus, check_transition

MAX_HISTORY = 50


@dataclass(frozen=True)
class EngineState:
    status: EngineStatus = INITIAL_STATUS
    tree: SpecNode | None = None
    resolved: ResolvedNode | None = None
    data_context: DataContext = field(default_factory=DataContext)
    error: str | None = None
    loading: bool = False
    history: tuple[UIEvent, ...] = ()
    output: Any = None


@dataclass(frozen=True)
class UIEventReceived:
    event: UIEvent


@dataclass(frozen=True)
class PlanCommitted:
    tree: SpecNode


@dataclass(frozen=True)
class PartialUpdateApplied:
    node_id: str
    subtree: SpecNode


@dataclass(frozen=True)
class NodeAdded:
    parent_id: str
    node: SpecNode
    index: int | None = None


@dataclass(frozen=True)
class NodeRemoved:
    node_id: str


@dataclass(frozen=True)
class ErrorRaised:
    message: str


@dataclass(frozen=True)
class LoadingChanged:
    loading: bool


@dataclass(frozen=True)
class DataContextReplaced:
    context: DataContext


@dataclass(frozen=True)
class Resolved:
    tree: ResolvedNode


@dataclass(frozen=True)
class Rendered:
    output: Any


@dataclass(frozen=True)
class StatusChanged:
    status: EngineStatus


Action = (
    UIEventReceived
    | PlanCommitted
    | PartialUpdateApplied
    | NodeAdded
    | NodeRemoved
    | ErrorRaised
    | LoadingChanged
    | DataContextReplaced
    | Resolved
    | Rendered
    | StatusChanged
)


def _has_init(history: tuple[UIEvent, ...]) -> bool:
    return any(event.type is UIEventType.INIT for event in history)


def reduce(state: EngineState, action: Action) -> EngineState:
    """
    Apply ``action`` to ``state``.

    Raises:
        TreeError: For structural edits that cannot be applied
        ValidationError: If a partial update introduces a duplicate id
        InvalidTransitionError: For an illegal status change
    """
    match action:
        case UIEventReceived(event=event):
            if event.type is UIEventType.INIT and _has_init(state.history):
                return state
            return replace(state, history=(*state.history, event)[-MAX_HISTORY:])

        case PlanCommitted(tree=tree):
            return replace(state, tree=tree, loading=False, error=None)

        case PartialUpdateApplied(node_id=node_id, subtree=subtree):
            if state.tree is None:
                return replace(state, tree=subtree, loading=False)
            tree = replace_node(state.tree, node_id, subtree)
            ensure_unique_ids(tree)
            return replace(state, tree=tree, loading=False)

        case NodeAdded(parent_id=parent_id, node=node, index=index):
            if state.tree is None:
                return state
            return replace(state, tree=add_child(state.tree, parent_id, node, index))

        case NodeRemoved(node_id=node_id):
            if state.tree is None:
                return state
            return replace(state, tree=remove_node(state.tree, node_id))

        case ErrorRaised(message=message):
            return replace(state, status=EngineStatus.ERROR, error=message, loading=False)

        case LoadingChanged(loading=loading):
            return replace(state, loading=loading)

        case DataContextReplaced(context=context):
            return replace(state, data_context=context)

        case Resolved(tree=resolved):
            return replace(state, resolved=resolved)

        case Rendered(output=output):
            return replace(state, output=output)

        case StatusChanged(status=status):
            check_transition(state.status, status)
            error = None if state.status is EngineStatus.ERROR else state.error
            return replace(state, status=status, error=error)

    raise TypeError(f"Unknown engine action: {type(action).__name__}")


__all__ = [
    "MAX_HISTORY",
    "EngineState",
    "Action",
    "UIEventReceived",
    "PlanCommitted",
    "PartialUpdateApplied",
    "NodeAdded",
    "NodeRemoved",
    "ErrorRaised",
    "LoadingChanged",
    "DataContextReplaced",
    "Resolved",
    "Rendered",
    "StatusChanged",
    "reduce",
]
