"""uispec - planner-driven UI specification state engine."""

from .core import EngineConfig, PlanningConfig, Settings, configure_logging, get_logger, get_settings
from .spec import SpecNode, UIEvent, UIEventType, parse_spec
from .engine import UIEngine, DataContext, EngineStatus, SystemEventType
from .planner import LLMPlanner, RulePlanner, PlannerInput
from .adapters import TextComponentAdapter, TableSchemaAdapter, HttpSchemaAdapter

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "PlanningConfig",
    "Settings",
    "configure_logging",
    "get_logger",
    "get_settings",
    "SpecNode",
    "UIEvent",
    "UIEventType",
    "parse_spec",
    "UIEngine",
    "DataContext",
    "EngineStatus",
    "SystemEventType",
    "LLMPlanner",
    "RulePlanner",
    "PlannerInput",
    "TextComponentAdapter",
    "TableSchemaAdapter",
    "HttpSchemaAdapter",
]
