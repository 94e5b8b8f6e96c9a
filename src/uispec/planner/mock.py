"""Rule-based planner.

Builds a master/detail layout straight from the schema, with no model
call. Used as the LLM fallback, for offline runs and in tests.
"""

from collections.abc import Mapping
from typing import Any

from ..core import PlanningConfig, get_logger
from ..spec.models import ActionDescriptor, SpecNode, UIEventType
from ..spec.tree import find_node
from .base import PlannerInput

logger = get_logger(__name__)

MAX_FIELDS = 4


def _fields(entry: Any) -> list[str]:
    if not isinstance(entry, Mapping):
        return []
    columns = entry.get("columns")
    if isinstance(columns, Mapping) and columns:
        return list(columns)[:MAX_FIELDS]
    sample = entry.get("sampleData")
    if isinstance(sample, list) and sample and isinstance(sample[0], Mapping):
        return list(sample[0])[:MAX_FIELDS]
    return []


def _title(source: str) -> str:
    return source.replace("_", " ").title()


class RulePlanner:
    """Plans one ListView and one Detail per schema source."""

    def __init__(self, title: str | None = None) -> None:
        self.title = title
        self.calls = 0

    def build(self, request: PlannerInput) -> SpecNode:
        children: list[SpecNode] = [
            SpecNode(id="header", node_type="Header", props={"title": self.title or request.goal})
        ]
        for source, entry in request.data_schema.items():
            children.extend(self._source_nodes(source, _fields(entry)))
        return SpecNode(id="root", node_type="Container", props={"layout": "column"}, children=tuple(children))

    def _source_nodes(self, source: str, fields: list[str]) -> list[SpecNode]:
        detail_id = f"{source}-detail"
        list_node = SpecNode(
            id=f"{source}-list",
            node_type="ListView",
            props={"title": _title(source), "fields": fields, "selectable": True},
            bindings={"data": source},
            events={UIEventType.CLICK: ActionDescriptor(action="SHOW_DETAIL", target=detail_id)},
        )
        back = SpecNode(
            id=f"{source}-back",
            node_type="Button",
            props={"label": "Back"},
            events={UIEventType.CLICK: ActionDescriptor(action="HIDE_DETAIL", target=detail_id)},
        )
        detail = SpecNode(
            id=detail_id,
            node_type="Detail",
            props={"title": f"{_title(source)} details", "fields": fields, "showBackButton": True},
            bindings={"data": f"{source}.selected"},
            children=(back,),
        )
        return [list_node, detail]

    async def plan(self, request: PlannerInput, config: PlanningConfig | None = None) -> SpecNode:
        self.calls += 1
        tree = self.build(request)
        target = request.target_node_id
        if target:
            subtree = find_node(tree, target)
            if subtree is None:
                subtree = SpecNode(id=target, node_type="Container")
            logger.info("rule_plan", action=request.action, target=target)
            return subtree
        logger.info("rule_plan", action=request.action, sources=list(request.data_schema))
        return tree


__all__ = ["RulePlanner"]
