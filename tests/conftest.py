"""Pytest configuration and fixtures."""

import os
from unittest.mock import MagicMock

import pytest

from uispec.adapters import TextComponentAdapter
from uispec.core import EngineConfig, Settings, get_settings
from uispec.engine import DataContext, initialize_data_context
from uispec.planner import RulePlanner
from uispec.spec import SpecNode, default_registry


# ============================================================================
# Pytest Hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with environment variables."""
    os.environ["UISPEC_LOG_LEVEL"] = "DEBUG"
    os.environ["UISPEC_PLAN_CACHE_ENABLED"] = "false"
    get_settings.cache_clear()


# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Test settings (no plan cache)."""
    return Settings(plan_cache_enabled=False)


@pytest.fixture
def registry():
    return default_registry()


# ============================================================================
# Data Fixtures
# ============================================================================

TASKS = [
    {"id": 1, "title": "Write report", "done": False, "priority": "high"},
    {"id": 2, "title": "Review PR", "done": True, "priority": "low"},
    {"id": 3, "title": "Plan sprint", "done": False, "priority": "medium"},
    {"id": 4, "title": "Fix bug", "done": False, "priority": "high"},
]


@pytest.fixture
def tasks():
    return [dict(task) for task in TASKS]


@pytest.fixture
def schema(tasks):
    """Schema with a single ``tasks`` source of four rows."""
    return {
        "tasks": {
            "tableName": "tasks",
            "columns": {
                "id": {"type": "integer", "primaryKey": True},
                "title": {"type": "string"},
                "done": {"type": "boolean"},
                "priority": {"type": "string"},
            },
            "sampleData": tasks,
        }
    }


@pytest.fixture
def context(schema) -> DataContext:
    return initialize_data_context(schema, {"id": "u1", "role": "admin"})


# ============================================================================
# Tree Fixtures
# ============================================================================

@pytest.fixture
def task_tree() -> SpecNode:
    """List bound to the bare source name plus a detail panel bound to the selection."""
    return SpecNode.model_validate(
        {
            "id": "root",
            "type": "Container",
            "children": [
                {"id": "header", "type": "Header", "props": {"title": "Tasks"}},
                {
                    "id": "list",
                    "type": "ListView",
                    "bindings": {"data": "tasks"},
                    "props": {"fields": ["title", "priority"]},
                    "events": {"click": {"action": "SHOW_DETAIL", "target": "detail"}},
                },
                {
                    "id": "detail",
                    "type": "Detail",
                    "bindings": {"data": "tasks.selected", "title": "{{tasks.selected.title}}"},
                    "children": [
                        {
                            "id": "back",
                            "type": "Button",
                            "props": {"label": "Back"},
                            "events": {"click": {"action": "HIDE_DETAIL", "target": "detail"}},
                        }
                    ],
                },
            ],
        }
    )


# ============================================================================
# Planner / Adapter Fixtures
# ============================================================================

class StaticPlanner:
    """Planner double returning fixed trees and recording requests."""

    def __init__(self, tree: SpecNode, partial: SpecNode | None = None) -> None:
        self.tree = tree
        self.partial = partial
        self.requests = []

    async def plan(self, request, config=None):
        self.requests.append(request)
        if request.target_node_id and self.partial is not None:
            return self.partial
        return self.tree


@pytest.fixture
def static_planner(task_tree):
    return StaticPlanner(task_tree)


@pytest.fixture
def rule_planner():
    return RulePlanner()


@pytest.fixture
def text_adapter():
    return TextComponentAdapter()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(enable_partial_updates=True)


@pytest.fixture
def mock_llm():
    """Mock language model whose ``astream`` yields canned chunks."""
    mock = MagicMock()
    chunks = ['{"id": "root", "type": "Container", ', '"children": [{"id": "t", "type": "Text", "props": {"text": "hi"}}]}']

    async def astream_mock(prompt, *args, **kwargs):
        for chunk in chunks:
            yield chunk

    mock.astream = astream_mock
    mock.bind.return_value = mock
    return mock


@pytest.fixture
def make_planner():
    """Factory for StaticPlanner doubles."""
    return StaticPlanner
