"""Planners: produce specification trees from goals, schemas and events."""

from .base import PlannerError, PlannerInput, PlanUpdate, Planner, StreamingPlanner
from .prompt import ACTION_PROMPTS, build_prompt, process_template
from .cache import PlanCache
from .llm import LLMPlanner
from .mock import RulePlanner

__all__ = [
    "PlannerError",
    "PlannerInput",
    "PlanUpdate",
    "Planner",
    "StreamingPlanner",
    "ACTION_PROMPTS",
    "build_prompt",
    "process_template",
    "PlanCache",
    "LLMPlanner",
    "RulePlanner",
]
