"""Engine status and legal transitions."""

from enum import Enum


class EngineStatus(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RESOLVING_BINDINGS = "resolving_bindings"
    RENDERING = "rendering"
    EVENT_PROCESSING = "event_processing"
    ERROR = "error"


INITIAL_STATUS = EngineStatus.INITIALIZING

_S = EngineStatus

# Every status may also move to ERROR, and to INITIALIZING (a superseding
# replan wins; the stale plan is dropped by its plan id)
TRANSITIONS: dict[EngineStatus, frozenset[EngineStatus]] = {
    _S.INITIALIZING: frozenset({_S.IDLE, _S.RESOLVING_BINDINGS, _S.INITIALIZING}),
    _S.IDLE: frozenset({_S.EVENT_PROCESSING, _S.RESOLVING_BINDINGS, _S.INITIALIZING}),
    _S.EVENT_PROCESSING: frozenset({_S.IDLE, _S.RESOLVING_BINDINGS, _S.EVENT_PROCESSING, _S.INITIALIZING}),
    # a new event may arrive while a pass is still in flight
    _S.RESOLVING_BINDINGS: frozenset({_S.RENDERING, _S.EVENT_PROCESSING, _S.RESOLVING_BINDINGS, _S.INITIALIZING}),
    _S.RENDERING: frozenset({_S.IDLE, _S.EVENT_PROCESSING, _S.RESOLVING_BINDINGS, _S.INITIALIZING}),
    _S.ERROR: frozenset({_S.INITIALIZING}),
}


class InvalidTransitionError(Exception):
    """Illegal status change requested."""

    def __init__(self, current: EngineStatus, requested: EngineStatus):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid engine transition {current.value} -> {requested.value}")


def can_transition(current: EngineStatus, requested: EngineStatus) -> bool:
    if requested is EngineStatus.ERROR:
        return True
    return requested in TRANSITIONS[current]


def check_transition(current: EngineStatus, requested: EngineStatus) -> EngineStatus:
    """
    Raises:
        InvalidTransitionError: If ``current`` cannot move to ``requested``
    """
    if not can_transition(current, requested):
        raise InvalidTransitionError(current, requested)
    return requested


__all__ = [
    "EngineStatus",
    "INITIAL_STATUS",
    "TRANSITIONS",
    "InvalidTransitionError",
    "can_transition",
    "check_transition",
]
