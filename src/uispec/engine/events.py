"""UI Event Hooks.

Caller-registered interceptors run before an event reaches the Action
Router. ``all`` hooks run first, then hooks for the event's type, each in
registration order. A hook may stop the remaining hooks
(``stop_propagation``) or also keep the event from the router
(``prevent_default``).
"""

import inspect
from collections.abc import Awaitable, Callable, Iterable
from typing import Literal

from ..core import get_logger
from ..spec.models import UIEvent, UIEventType

logger = get_logger(__name__)

ALL = "all"


class EventHookContext:
    """What a hook sees: the event plus propagation controls."""

    __slots__ = ("original_event", "_default_prevented", "_propagation_stopped")

    def __init__(self, event: UIEvent) -> None:
        self.original_event = event
        self._default_prevented = False
        self._propagation_stopped = False

    def prevent_default(self) -> None:
        """Stop remaining hooks and keep the event from the Action Router."""
        self._default_prevented = True
        self._propagation_stopped = True

    def stop_propagation(self) -> None:
        """Stop remaining hooks; the event is still routed."""
        self._propagation_stopped = True

    @property
    def default_prevented(self) -> bool:
        return self._default_prevented

    @property
    def propagation_stopped(self) -> bool:
        return self._propagation_stopped


EventHook = Callable[[EventHookContext], None | Awaitable[None]]


class EventPipeline:
    """Registry and runner for UI event hooks."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[EventHook]] = {}

    def register(
        self,
        event_types: Iterable[UIEventType | str] | Literal["all"],
        hook: EventHook,
    ) -> Callable[[], None]:
        """
        Register a hook for some event types, or ``"all"``.

        Returns:
            Function that unregisters the hook
        """
        if event_types == ALL:
            keys = [ALL]
        else:
            keys = [UIEventType.normalize(t).value for t in event_types]

        for key in keys:
            self._hooks.setdefault(key, []).append(hook)

        def unregister() -> None:
            for key in keys:
                hooks = self._hooks.get(key)
                if hooks and hook in hooks:
                    hooks.remove(hook)

        return unregister

    def clear(self) -> None:
        self._hooks.clear()

    def hook_count(self, event_type: UIEventType | str | None = None) -> int:
        if event_type is None:
            return sum(len(hooks) for hooks in self._hooks.values())
        key = ALL if event_type == ALL else UIEventType.normalize(event_type).value
        return len(self._hooks.get(key, ()))

    async def process_event(self, event: UIEvent) -> bool:
        """
        Run the hooks for ``event``.

        Returns:
            True if the event should proceed to the Action Router
        """
        context = EventHookContext(event)

        for key in (ALL, event.type.value):
            for hook in list(self._hooks.get(key, ())):
                await self._run(hook, context)
                if context.propagation_stopped:
                    break
            if context.propagation_stopped:
                break

        if context.default_prevented:
            logger.debug("event_default_prevented", event_type=event.type.value, node_id=event.node_id)
        return not context.default_prevented

    async def _run(self, hook: EventHook, context: EventHookContext) -> None:
        try:
            result = hook(context)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "event_hook_failed",
                hook=getattr(hook, "__name__", repr(hook)),
                event_type=context.original_event.type.value,
                error=str(e),
                exc_info=True,
            )


def create_event_hook(
    hook: EventHook,
    prevent_default: bool = False,
    stop_propagation: bool = False,
) -> EventHook:
    """
    Wrap ``hook`` so it always prevents default and/or stops propagation afterwards.

    Example:
        pipeline.register([UIEventType.CLICK], create_event_hook(audit, prevent_default=True))
    """

    async def wrapped(context: EventHookContext) -> None:
        result = hook(context)
        if inspect.isawaitable(result):
            await result
        if prevent_default:
            context.prevent_default()
        if stop_propagation:
            context.stop_propagation()

    wrapped.__name__ = getattr(hook, "__name__", "hook")
    return wrapped


__all__ = [
    "ALL",
    "EventHook",
    "EventHookContext",
    "EventPipeline",
    "create_event_hook",
]
