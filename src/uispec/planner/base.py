"""Planner interface."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import PlanningConfig
from ..spec.models import SpecNode, UIEvent


class PlannerError(Exception):
    """Planning failed (external call error or unusable output)."""

    pass


class PlannerInput(BaseModel):
    """Everything a planner needs to produce a tree."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data_schema: dict[str, Any] = Field(default_factory=dict, alias="schema")
    goal: str
    history: tuple[UIEvent, ...] = Field(default=())
    user_context: dict[str, Any] | None = Field(default=None, alias="userContext")
    data_context: dict[str, Any] | None = Field(default=None)
    action: str | None = Field(default=None)
    target_node_id: str | None = Field(default=None)
    prompt: str | None = Field(default=None)


@dataclass(frozen=True)
class PlanUpdate:
    """One step of a streamed plan. Only ``final`` updates may be committed."""

    tree: SpecNode | None
    chunk: str = ""
    final: bool = False


@runtime_checkable
class Planner(Protocol):
    async def plan(self, request: PlannerInput, config: PlanningConfig | None = None) -> SpecNode:
        ...


@runtime_checkable
class StreamingPlanner(Planner, Protocol):
    def stream(self, request: PlannerInput, config: PlanningConfig | None = None) -> AsyncIterator[PlanUpdate]:
        ...


__all__ = [
    "PlannerError",
    "PlannerInput",
    "PlanUpdate",
    "Planner",
    "StreamingPlanner",
]
