"""System Event Bus.

One-way lifecycle notifications for observability. Listeners are called
synchronously in subscription order; a failing listener is logged and the
remaining listeners still run. Each engine owns one bus and clears it on
dispose.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from ..core import get_logger
from ..spec.models import ResolvedNode, SpecNode

logger = get_logger(__name__)


class SystemEventType(str, Enum):
    PLAN_START = "PLAN_START"
    PLAN_PROMPT_CREATED = "PLAN_PROMPT_CREATED"
    PLAN_RESPONSE_CHUNK = "PLAN_RESPONSE_CHUNK"
    PLAN_COMPLETE = "PLAN_COMPLETE"
    PLAN_ERROR = "PLAN_ERROR"

    BINDING_RESOLUTION_START = "BINDING_RESOLUTION_START"
    BINDING_RESOLUTION_COMPLETE = "BINDING_RESOLUTION_COMPLETE"

    DATA_FETCH_START = "DATA_FETCH_START"
    DATA_FETCH_COMPLETE = "DATA_FETCH_COMPLETE"

    RENDER_START = "RENDER_START"
    RENDER_COMPLETE = "RENDER_COMPLETE"

    PARTIAL_UPDATE = "PARTIAL_UPDATE"

    PREFETCH_START = "PREFETCH_START"
    PREFETCH_COMPLETE = "PREFETCH_COMPLETE"


# Emitted on every pass; left out of debug logging
NOISY_EVENTS = frozenset({SystemEventType.RENDER_START, SystemEventType.BINDING_RESOLUTION_START})


@dataclass(frozen=True, kw_only=True)
class SystemEvent:
    type: ClassVar[SystemEventType]
    timestamp: float = field(default_factory=time.time)

    def summary(self) -> dict[str, Any]:
        """Scalar fields only, for log lines."""
        return {
            key: value
            for key, value in vars(self).items()
            if isinstance(value, (str, int, float, bool)) or value is None
        }


@dataclass(frozen=True, kw_only=True)
class PlanStartEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PLAN_START
    plan_id: str
    goal: str
    target_node_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class PlanPromptCreatedEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PLAN_PROMPT_CREATED
    plan_id: str
    prompt: str


@dataclass(frozen=True, kw_only=True)
class PlanResponseChunkEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PLAN_RESPONSE_CHUNK
    plan_id: str
    chunk: str
    is_complete: bool = False


@dataclass(frozen=True, kw_only=True)
class PlanCompleteEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PLAN_COMPLETE
    plan_id: str
    layout: SpecNode
    execution_time_ms: float


@dataclass(frozen=True, kw_only=True)
class PlanErrorEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PLAN_ERROR
    plan_id: str
    error: BaseException
    message: str = ""


@dataclass(frozen=True, kw_only=True)
class BindingResolutionStartEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.BINDING_RESOLUTION_START
    pass_id: str
    layout: SpecNode


@dataclass(frozen=True, kw_only=True)
class BindingResolutionCompleteEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.BINDING_RESOLUTION_COMPLETE
    pass_id: str
    original_layout: SpecNode
    resolved_layout: ResolvedNode
    issues: int = 0


@dataclass(frozen=True, kw_only=True)
class DataFetchStartEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.DATA_FETCH_START
    fetch_id: str
    table_name: str
    query: Any = None


@dataclass(frozen=True, kw_only=True)
class DataFetchCompleteEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.DATA_FETCH_COMPLETE
    fetch_id: str
    table_name: str
    results: list[Any]
    execution_time_ms: float
    applied: bool = True


@dataclass(frozen=True, kw_only=True)
class RenderStartEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.RENDER_START
    pass_id: str
    layout: ResolvedNode


@dataclass(frozen=True, kw_only=True)
class RenderCompleteEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.RENDER_COMPLETE
    pass_id: str
    layout: ResolvedNode
    render_time_ms: float


@dataclass(frozen=True, kw_only=True)
class PartialUpdateEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PARTIAL_UPDATE
    target_node_id: str
    action: str
    invalidated: int = 0


@dataclass(frozen=True, kw_only=True)
class PrefetchStartEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PREFETCH_START
    depth: int


@dataclass(frozen=True, kw_only=True)
class PrefetchCompleteEvent(SystemEvent):
    type: ClassVar[SystemEventType] = SystemEventType.PREFETCH_COMPLETE
    prefetched_layouts: dict[str, SpecNode] = field(default_factory=dict)


SystemEventListener = Callable[[SystemEvent], Any]


class SystemEventBus:
    """Per-engine publish/subscribe channel, one topic per SystemEventType."""

    def __init__(self) -> None:
        self._listeners: dict[SystemEventType, list[SystemEventListener]] = {}

    def on(self, event_type: SystemEventType, listener: SystemEventListener) -> Callable[[], None]:
        """
        Subscribe to one event type.

        Returns:
            Function that unsubscribes the listener
        """
        self._listeners.setdefault(event_type, []).append(listener)

        def unregister() -> None:
            listeners = self._listeners.get(event_type)
            if listeners and listener in listeners:
                listeners.remove(listener)

        return unregister

    def on_all(self, listener: SystemEventListener, exclude: frozenset[SystemEventType] = frozenset()) -> Callable[[], None]:
        unregisters = [self.on(t, listener) for t in SystemEventType if t not in exclude]

        def unregister() -> None:
            for fn in unregisters:
                fn()

        return unregister

    def emit(self, event: SystemEvent) -> None:
        """Deliver ``event`` to a snapshot of its subscribers."""
        for listener in list(self._listeners.get(event.type, ())):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "system_event_listener_failed",
                    event_type=event.type.value,
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e),
                    exc_info=True,
                )

    def listener_count(self, event_type: SystemEventType | None = None) -> int:
        if event_type is None:
            return sum(len(listeners) for listeners in self._listeners.values())
        return len(self._listeners.get(event_type, ()))

    def clear(self) -> None:
        self._listeners.clear()

    def dispose(self) -> None:
        self.clear()


def attach_debug_logger(bus: SystemEventBus) -> Callable[[], None]:
    """Log every system event except the per-pass start events."""
    debug_logger = get_logger("uispec.debug")

    def log_event(event: SystemEvent) -> None:
        debug_logger.info("system_event", event_type=event.type.value, **event.summary())

    log_event.__name__ = "debug_logger"
    return bus.on_all(log_event, exclude=NOISY_EVENTS)


__all__ = [
    "SystemEventType",
    "NOISY_EVENTS",
    "SystemEvent",
    "PlanStartEvent",
    "PlanPromptCreatedEvent",
    "PlanResponseChunkEvent",
    "PlanCompleteEvent",
    "PlanErrorEvent",
    "BindingResolutionStartEvent",
    "BindingResolutionCompleteEvent",
    "DataFetchStartEvent",
    "DataFetchCompleteEvent",
    "RenderStartEvent",
    "RenderCompleteEvent",
    "PartialUpdateEvent",
    "PrefetchStartEvent",
    "PrefetchCompleteEvent",
    "SystemEventListener",
    "SystemEventBus",
    "attach_debug_logger",
]
