"""Runtime engine: data context, bindings, events, routing and state."""

from .context import DataContext, SourceEntry, initialize_data_context, lookup_path
from .bindings import BindingResolver, ResolutionResult, BindingIssue, resolve, resolve_expression
from .events import EventPipeline, EventHookContext, create_event_hook
from .system_events import SystemEventBus, SystemEventType, attach_debug_logger
from .actions import ActionKind, RouteKind, RoutingError
from .render_cache import RenderCache, RenderKey
from .router import ActionRouter, RouteResult
from .state import EngineStatus, InvalidTransitionError
from .reducer import EngineState, reduce
from .engine import UIEngine

__all__ = [
    "DataContext",
    "SourceEntry",
    "initialize_data_context",
    "lookup_path",
    "BindingResolver",
    "ResolutionResult",
    "BindingIssue",
    "resolve",
    "resolve_expression",
    "EventPipeline",
    "EventHookContext",
    "create_event_hook",
    "SystemEventBus",
    "SystemEventType",
    "attach_debug_logger",
    "ActionKind",
    "RouteKind",
    "RoutingError",
    "RenderCache",
    "RenderKey",
    "ActionRouter",
    "RouteResult",
    "EngineStatus",
    "InvalidTransitionError",
    "EngineState",
    "reduce",
    "UIEngine",
]
