"""Structural validation of planner output before it becomes a tree."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from returns.result import Failure, Result, Success

from .json import safe_json_dumps

# Validation limits
MAX_SPEC_SIZE = 512 * 1024  # 512KB
MAX_SPEC_DEPTH = 40
MAX_GOAL_LENGTH = 10_000


class ValidationError(Exception):
    """Validation failed."""

    pass


@dataclass(frozen=True)
class ValidationResult:
    """Validation error with details (for Result pattern)."""

    message: str
    field: str | None = None
    value: Any | None = None


class RequestValidator(BaseModel):
    """Base validator with strict configuration."""

    model_config = ConfigDict(
        strict=True, validate_assignment=True, extra="forbid", frozen=True
    )


class GoalRequest(RequestValidator):
    """Validated planning goal and schema handed to an engine."""

    goal: str = Field(min_length=1, max_length=MAX_GOAL_LENGTH)
    source_schema: dict[str, Any] = Field(default_factory=dict)

    @field_validator("goal")
    @classmethod
    def validate_goal(cls, v: str) -> str:
        """Ensure goal is non-empty after stripping."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Goal cannot be empty")
        return stripped


def validate_json_size(data: str, max_size: int, name: str = "JSON") -> None:
    """
    Validate encoded size of planner output.

    Raises:
        ValidationError: If size exceeds limit
    """
    size = len(data.encode("utf-8"))
    if size > max_size:
        raise ValidationError(f"{name} size {size} bytes exceeds maximum {max_size} bytes")


def validate_json_depth(obj: Any, max_depth: int = MAX_SPEC_DEPTH, current_depth: int = 0) -> None:
    """
    Validate JSON nesting depth to keep recursive tree walks bounded.

    Raises:
        ValidationError: If depth exceeds limit
    """
    if current_depth > max_depth:
        raise ValidationError(f"JSON nesting depth {current_depth} exceeds maximum {max_depth}")

    if isinstance(obj, dict):
        for value in obj.values():
            validate_json_depth(value, max_depth, current_depth + 1)
    elif isinstance(obj, list):
        for item in obj:
            validate_json_depth(item, max_depth, current_depth + 1)


class SpecValidator:
    """Validates the raw (dict) shape of a specification tree."""

    def __init__(self, max_size: int = MAX_SPEC_SIZE, max_depth: int = MAX_SPEC_DEPTH) -> None:
        self.max_size = max_size
        self.max_depth = max_depth

    def validate(self, spec_dict: dict[str, Any], spec_json: str | None = None) -> None:
        """
        Validate limits, required fields and id uniqueness across the whole tree.

        Raises:
            ValidationError: If validation fails
        """
        if spec_json is None:
            spec_json = safe_json_dumps(spec_dict)
        validate_json_size(spec_json, self.max_size, "UI spec")
        validate_json_depth(spec_dict, self.max_depth)

        seen: set[str] = set()
        stack: list[tuple[Any, str]] = [(spec_dict, "root")]
        while stack:
            node, where = stack.pop()
            if not isinstance(node, dict):
                raise ValidationError(f"Node at {where} must be an object")

            node_id = node.get("id")
            if not isinstance(node_id, str) or not node_id:
                raise ValidationError(f"Node at {where} missing required 'id' field")
            if node_id in seen:
                raise ValidationError(f"Duplicate node id '{node_id}'")
            seen.add(node_id)

            if not (node.get("node_type") or node.get("type")):
                raise ValidationError(f"Node '{node_id}' missing required 'node_type' field")

            children = node.get("children")
            if children is None:
                continue
            if not isinstance(children, list):
                raise ValidationError(f"Node '{node_id}' 'children' must be a list")
            for index, child in enumerate(reversed(children)):
                stack.append((child, f"{node_id}.children[{len(children) - 1 - index}]"))


def validate_spec_tree(
    spec: dict[str, Any],
    json_str: str | None = None,
    max_size: int = MAX_SPEC_SIZE,
    max_depth: int = MAX_SPEC_DEPTH,
) -> Result[None, ValidationResult]:
    """
    Validate a raw specification tree (Result pattern version).

    Returns:
        Result indicating success or validation error
    """
    try:
        SpecValidator(max_size=max_size, max_depth=max_depth).validate(spec, json_str)
        return Success(None)
    except ValidationError as e:
        return Failure(ValidationResult(str(e)))


__all__ = [
    "MAX_SPEC_SIZE",
    "MAX_SPEC_DEPTH",
    "MAX_GOAL_LENGTH",
    "ValidationError",
    "ValidationResult",
    "RequestValidator",
    "GoalRequest",
    "SpecValidator",
    "validate_json_size",
    "validate_json_depth",
    "validate_spec_tree",
]
