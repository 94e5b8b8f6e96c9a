"""Prompt construction for UI planning."""

import re
from collections.abc import Mapping
from typing import Any

from ..core.json import safe_json_dumps
from .base import PlannerInput

UI_GUIDANCE_BASE = """UI Guidance:
1. Create a focused interface that directly addresses the goal
2. Use appropriate UI patterns (lists, forms, details, etc.)
3. Include navigation between related views when needed
4. Keep the interface simple and intuitive
5. Bind to schema data where appropriate
6. All Button nodes MUST include a "label" prop
7. Every event handler MUST include both an action and a target"""

LIST_BINDING_GUIDANCE = (
    "8. For ListView or Table nodes, the \"data\" binding MUST point to the exact path "
    "of the row array in the context.\n"
    "Example: if the context has { tasks: { data: [...] } }, bind { \"data\": \"tasks.data\" }, "
    "never { \"data\": \"tasks\" }."
)

COMMON_UI_GUIDANCE = f"{UI_GUIDANCE_BASE}\n{LIST_BINDING_GUIDANCE}"

NODE_FORMAT = (
    "type SpecNode = { id: string; node_type: string; props?: object; bindings?: object; "
    "events?: { [event: string]: { action: string; target: string; payload?: object } }; "
    "children?: SpecNode[] }"
)

# Per-action prompt templates, ${name} placeholders
ACTION_PROMPTS: dict[str, str] = {
    "INIT": "Action: ${actionType}. Initialize the application view for the goal: ${goal}",
    "FULL_REFRESH": "Action: ${actionType}. Event ${eventType} on node ${nodeId}. Goal: ${goal}",
    "NAVIGATE": "Action: ${actionType}. Navigate from ${nodeId} to view: ${targetNodeId}. Goal: ${goal}",
    "UPDATE_NODE": (
        "Action: ${actionType}. Regenerate only the subtree rooted at ${targetNodeId} "
        "(keep its id) after ${eventType} on ${nodeId}. Goal: ${goal}"
    ),
    "ADD_DROPDOWN": (
        "Action: ${actionType}. Return the node ${targetNodeId} (keep its id) with a Select "
        "added for ${nodeId}. Goal: ${goal}"
    ),
    "UPDATE_FORM": (
        "Action: ${actionType}. Return the form ${targetNodeId} (keep its id) updated for the "
        "current selections. Goal: ${goal}"
    ),
}

DEFAULT_ACTION_PROMPT = "Action: ${actionType}. Event ${eventType} on node ${nodeId}. Target: ${targetNodeId}. Goal: ${goal}"

_TEMPLATE_VAR = re.compile(r"\$\{(.*?)\}")


def process_template(template: str, values: Mapping[str, Any]) -> str:
    """Substitute ``${name}``; unknown names are left as written."""

    def substitute(match: re.Match) -> str:
        key = match.group(1).strip()
        return str(values[key]) if key in values else match.group(0)

    return _TEMPLATE_VAR.sub(substitute, template)


def summarize_schema(schema: Mapping[str, Any]) -> str:
    """Per-source schema listing, without sample rows."""
    parts = []
    for name, table in schema.items():
        if isinstance(table, Mapping):
            table = {k: v for k, v in table.items() if k != "sampleData"}
            described = safe_json_dumps(table)
        else:
            described = str(table)
        parts.append(f"Table: {name}\nSchema: {described}")
    return "\n\n".join(parts)


def describe_history(history: tuple, limit: int = 5) -> str:
    if not history:
        return "No recent events"
    lines = []
    for event in history[-limit:]:
        line = f"Event: {event.type.value} on node {event.node_id}"
        if event.payload:
            line += f" with payload {safe_json_dumps(event.payload)}"
        lines.append(line)
    return "\n".join(lines)


def build_prompt(
    request: PlannerInput,
    template: str | None = None,
    values: Mapping[str, Any] | None = None,
) -> str:
    """
    Build the planning prompt.

    With ``template`` the result is the template filled from ``values`` plus
    the standard fields (schemaInfo, recentEvents, userContextString,
    commonUIGuidance, goal). Otherwise a full generation prompt is returned.
    """
    schema_info = summarize_schema(request.data_schema)
    recent_events = describe_history(request.history)
    user_section = (
        f"\n\nUser Context:\n{safe_json_dumps(request.user_context)}" if request.user_context else ""
    )

    if template is not None:
        merged = dict(values or {})
        merged.update(
            schemaInfo=schema_info,
            recentEvents=recent_events,
            userContextString=user_section.strip(),
            commonUIGuidance=COMMON_UI_GUIDANCE,
            goal=request.goal,
        )
        return process_template(template, merged)

    if request.history:
        last = request.history[-1]
        interaction = f"The user's last action was: {last.type.value} on node {last.node_id}"
    else:
        interaction = "The user initiated the session for the goal"

    return f"""You are an expert UI generator.
Create a user interface that achieves the following goal: "{request.goal}".
{interaction}.

Available data schema:
{schema_info}

Recent user interactions:
{recent_events}{user_section}

Generate a complete UI specification in JSON format that matches the following type:
{NODE_FORMAT}
{COMMON_UI_GUIDANCE}

Respond ONLY with the JSON UI specification and no other text."""


__all__ = [
    "COMMON_UI_GUIDANCE",
    "ACTION_PROMPTS",
    "DEFAULT_ACTION_PROMPT",
    "process_template",
    "summarize_schema",
    "describe_history",
    "build_prompt",
]
