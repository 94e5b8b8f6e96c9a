"""Action Router.

Maps a UI event, looked up in the resolved tree that was on screen when the
event fired, to one of: a data mutation, a full replan, a partial update of
one subtree, or nothing. Routing is a pure function of its inputs, so a
redelivered event routes the same way.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..core import get_logger
from ..planner.base import PlannerInput
from ..planner.prompt import ACTION_PROMPTS, DEFAULT_ACTION_PROMPT, build_prompt
from ..spec.models import ResolvedNode, UIEvent, UIEventType
from ..spec.registry import NodeTypeRegistry, default_registry
from ..spec.tree import ancestors, find_node, walk
from .actions import (
    ActionKind,
    ActionRequest,
    RouteKind,
    RoutingError,
    classify,
    execute,
)
from .bindings import binding_roots
from .context import DataContext
from .render_cache import RenderKey

logger = get_logger(__name__)


@dataclass(frozen=True)
class RouteResult:
    """Routing decision plus whatever it produced."""

    kind: RouteKind
    event: UIEvent
    context: DataContext
    action: ActionKind | None = None
    target_node_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    mutated: frozenset[str] = frozenset()
    invalidations: tuple[RenderKey, ...] = ()
    planner_input: PlannerInput | None = None
    prompt: str | None = None

    @property
    def needs_plan(self) -> bool:
        return self.kind in (RouteKind.FULL_REPLAN, RouteKind.PARTIAL)

    @property
    def context_changed(self) -> bool:
        return bool(self.mutated)


def dependent_keys(tree: ResolvedNode | None, roots: frozenset[str] | set[str]) -> tuple[RenderKey, ...]:
    """
    Render keys of nodes reading any of ``roots``, plus their ancestors.

    Keys are computed from ``tree`` (the tree the cached output was rendered from).
    """
    if tree is None or not roots:
        return ()
    affected: set[str] = set()
    for node in walk(tree):
        if binding_roots(node) & roots:
            affected.add(node.id)
            affected.update(parent.id for parent in ancestors(tree, node.id))
    return tuple(RenderKey.for_node(node) for node in walk(tree) if node.id in affected)


def subtree_keys(tree: ResolvedNode, node_id: str) -> tuple[RenderKey, ...]:
    """Render keys of the subtree at ``node_id`` and of its ancestors."""
    node = find_node(tree, node_id)
    if node is None:
        return ()
    nodes = [*walk(node), *ancestors(tree, node_id)]
    return tuple(RenderKey.for_node(n) for n in nodes)


class ActionRouter:
    """Routes UI events for one engine (fixed schema and goal)."""

    def __init__(
        self,
        schema: Mapping[str, Any],
        goal: str,
        registry: NodeTypeRegistry | None = None,
        enable_partial_updates: bool = True,
        user_context: Mapping[str, Any] | None = None,
    ) -> None:
        self.schema = dict(schema)
        self.goal = goal
        self.registry = registry or default_registry()
        self.enable_partial_updates = enable_partial_updates
        self.user_context = dict(user_context or {})

    def route(self, event: UIEvent, tree: ResolvedNode | None, context: DataContext) -> RouteResult:
        """
        Route ``event``.

        Args:
            event: The UI event
            tree: Resolved tree captured when the event was raised
            context: Current data context

        Returns:
            RouteResult; for mutations ``context`` is the updated context

        Raises:
            RoutingError: Unknown action kind, missing node or missing target
        """
        node = find_node(tree, event.node_id) if tree is not None else None
        descriptor = node.events.get(event.type) if node is not None else None
        runtime_payload = dict(event.payload or {})

        if descriptor is not None:
            kind = ActionKind.parse(descriptor.action)
            target = descriptor.target or node.id
            # static descriptor payload wins over the runtime payload
            payload = {**runtime_payload, **descriptor.payload}
        elif event.type is UIEventType.INIT:
            kind, target, payload = ActionKind.FULL_REFRESH, None, runtime_payload
        elif node is None:
            raise RoutingError(f"Node '{event.node_id}' not found in the tree the event was raised from")
        elif event.type in (UIEventType.CLICK, UIEventType.SUBMIT):
            kind, target, payload = ActionKind.FULL_REFRESH, None, runtime_payload
        elif event.type is UIEventType.CHANGE and self.registry.is_input(node.node_type):
            kind, target, payload = ActionKind.UPDATE_DATA, self._value_path(node), runtime_payload
        else:
            # no descriptor and no default route: nothing changes, no replan
            logger.debug("event_not_routed", event_type=event.type.value, node_id=event.node_id)
            return RouteResult(kind=RouteKind.NONE, event=event, context=context)

        route_kind = classify(kind, self.enable_partial_updates)
        logger.debug(
            "event_routed",
            event_type=event.type.value,
            node_id=event.node_id,
            action=kind.value,
            route=route_kind.value,
            target=target,
        )

        match route_kind:
            case RouteKind.MUTATION:
                target_node = find_node(tree, target) if tree is not None and target else None
                request = ActionRequest(
                    kind=kind,
                    event=event,
                    target=target,
                    payload=payload,
                    node=node,
                    target_node=target_node,
                )
                result = execute(request, context)
                return RouteResult(
                    kind=route_kind,
                    event=event,
                    context=result.context,
                    action=kind,
                    target_node_id=target,
                    payload=payload,
                    mutated=result.mutated,
                    invalidations=dependent_keys(tree, result.mutated),
                )

            case RouteKind.PARTIAL:
                if tree is None or not target or find_node(tree, target) is None:
                    raise RoutingError(f"{kind.value} target node '{target}' not found")
                planner_input, prompt = self._planner_request(event, kind, target, payload, context)
                return RouteResult(
                    kind=route_kind,
                    event=event,
                    context=context,
                    action=kind,
                    target_node_id=target,
                    payload=payload,
                    invalidations=subtree_keys(tree, target),
                    planner_input=planner_input,
                    prompt=prompt,
                )

            case _:
                planner_input, prompt = self._planner_request(event, kind, target, payload, context)
                return RouteResult(
                    kind=RouteKind.FULL_REPLAN,
                    event=event,
                    context=context,
                    action=kind,
                    target_node_id=target,
                    payload=payload,
                    planner_input=planner_input,
                    prompt=prompt,
                )

    def _value_path(self, node: ResolvedNode) -> str:
        expr = node.bindings.get("value")
        if isinstance(expr, str) and expr.strip():
            return expr.strip().removeprefix("{{").removesuffix("}}").strip()
        return node.id

    def _planner_request(
        self,
        event: UIEvent,
        kind: ActionKind,
        target: str | None,
        payload: Mapping[str, Any],
        context: DataContext,
    ) -> tuple[PlannerInput, str]:
        partial = kind not in (ActionKind.FULL_REFRESH, ActionKind.NAVIGATE) and self.enable_partial_updates
        user_context = dict(self.user_context)
        user_context["sourceNodeId"] = event.node_id
        if target:
            user_context["targetNodeId"] = target
        if payload:
            user_context["eventPayload"] = dict(payload)

        planner_input = PlannerInput(
            schema=self.schema,
            goal=self.goal,
            history=(event,),
            user_context=user_context,
            data_context=context.to_dict(),
            action=kind.value,
            target_node_id=target if partial else None,
        )

        values: dict[str, Any] = {
            "goal": self.goal,
            "eventType": event.type.value,
            "nodeId": event.node_id,
            "targetNodeId": target or "root",
            "actionType": kind.value,
        }
        values.update({f"eventPayload_{k}": v for k, v in payload.items()})

        key = "INIT" if event.type is UIEventType.INIT else kind.value
        template = ACTION_PROMPTS.get(key, DEFAULT_ACTION_PROMPT)
        prompt = f"{build_prompt(planner_input, template, values)}\n\n{build_prompt(planner_input)}"
        return planner_input.model_copy(update={"prompt": prompt}), prompt


__all__ = [
    "RoutingError",
    "RouteKind",
    "RouteResult",
    "ActionRouter",
    "dependent_keys",
    "subtree_keys",
]
