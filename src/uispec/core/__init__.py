"""Core utilities and infrastructure."""

from .config import Settings, EngineConfig, PlanningConfig, get_settings
from .validate import (
    ValidationError,
    ValidationResult,
    GoalRequest,
    SpecValidator,
    validate_json_size,
    validate_json_depth,
    validate_spec_tree,
)
from .logging_config import configure_logging, get_logger, LogContext
from .stream import ResponseBuffer
from .json import extract_json, safe_json_dumps, JSONParseError
from .hash import Algorithm, hash_string, hash_fields
from .cache import LRUCache, Stats


def create_container(*args, **kwargs):
    """Create dependency injection container (lazy import to avoid circular deps)."""
    from .container import create_container as _create_container

    return _create_container(*args, **kwargs)


__all__ = [
    # Config
    "Settings",
    "EngineConfig",
    "PlanningConfig",
    "get_settings",
    # Validation
    "ValidationError",
    "ValidationResult",
    "GoalRequest",
    "SpecValidator",
    "validate_json_size",
    "validate_json_depth",
    "validate_spec_tree",
    # Logging
    "configure_logging",
    "get_logger",
    "LogContext",
    # Streaming
    "ResponseBuffer",
    # JSON
    "extract_json",
    "safe_json_dumps",
    "JSONParseError",
    # DI
    "create_container",
    # Hashing
    "Algorithm",
    "hash_string",
    "hash_fields",
    # Caching
    "LRUCache",
    "Stats",
]
