"""Dependency Injection Container."""

from collections.abc import Mapping
from typing import Any

from injector import Injector, Module, provider, singleton
from langchain_core.language_models import BaseLanguageModel

from ..adapters.component import ComponentAdapter, TextComponentAdapter
from ..adapters.schema import SchemaAdapter
from ..engine.engine import UIEngine
from ..planner.base import Planner
from ..planner.llm import LLMPlanner
from ..planner.mock import RulePlanner
from ..spec.registry import NodeTypeRegistry, default_registry
from .config import EngineConfig, Settings, get_settings
from .logging_config import configure_logging, get_logger

logger = get_logger(__name__)


class CoreModule(Module):
    """Core dependencies."""

    def __init__(
        self,
        schema: Mapping[str, Any],
        goal: str,
        llm: BaseLanguageModel | None = None,
        schema_adapter: SchemaAdapter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.schema = dict(schema)
        self.goal = goal
        self.llm = llm
        self.schema_adapter = schema_adapter
        self.settings = settings

    @singleton
    @provider
    def provide_settings(self) -> Settings:
        return self.settings or get_settings()

    @singleton
    @provider
    def provide_registry(self) -> NodeTypeRegistry:
        return default_registry()

    @singleton
    @provider
    def provide_planner(self, settings: Settings) -> Planner:
        """Provide the LLM planner when a model is given, rule-based otherwise."""
        rules = RulePlanner()
        if self.llm is None:
            logger.info("planner_selected", mode="rule-based")
            return rules
        return LLMPlanner(self.llm, fallback=rules, settings=settings)

    @singleton
    @provider
    def provide_component_adapter(self) -> ComponentAdapter:
        return TextComponentAdapter()

    @singleton
    @provider
    def provide_engine(
        self,
        settings: Settings,
        registry: NodeTypeRegistry,
        planner: Planner,
        adapter: ComponentAdapter,
    ) -> UIEngine:
        """Provide a UI engine with all dependencies."""
        return UIEngine(
            self.schema,
            self.goal,
            planner,
            adapter,
            config=EngineConfig.from_settings(settings),
            schema_adapter=self.schema_adapter,
            registry=registry,
            settings=settings,
        )


def create_container(
    schema: Mapping[str, Any],
    goal: str,
    llm: BaseLanguageModel | None = None,
    schema_adapter: SchemaAdapter | None = None,
    settings: Settings | None = None,
) -> Injector:
    """Configure logging and create the injector."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.json_logs)
    return Injector([CoreModule(schema, goal, llm=llm, schema_adapter=schema_adapter, settings=settings)])
