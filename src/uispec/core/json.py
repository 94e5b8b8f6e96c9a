"""Tolerant JSON decoding for planner output, fast encoding for prompts."""

from typing import Any
import json
import re

import msgspec
import orjson
from json_repair import repair_json

_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)(?:```|$)", re.DOTALL)
_decoder = msgspec.json.Decoder()


class JSONParseError(Exception):
    """Planner text held no usable JSON object."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


def strip_fences(text: str) -> str:
    """Body of the first markdown code fence, or ``text`` unchanged."""
    match = _FENCE.search(text)
    return match.group(1).strip() if match else text


def object_span(text: str) -> str | None:
    """
    Slice from the first ``{`` to the last ``}``.

    A missing closing brace (truncated stream) keeps the tail so the repair
    pass can close it. None when there is no object at all.
    """
    start = text.find("{")
    if start == -1:
        return None
    end = text.rfind("}")
    return text[start:] if end < start else text[start : end + 1]


def extract_json(text: str, repair: bool = True) -> dict[str, Any]:
    """
    Pull one JSON object out of model output.

    Handles markdown fences, chatter around the object, and (with
    ``repair``) truncated or slightly malformed JSON.

    Raises:
        JSONParseError: If no object can be decoded
    """
    candidate = object_span(strip_fences(text.strip()))
    if candidate is None:
        raise JSONParseError("No JSON object found in text")

    try:
        result = _decoder.decode(candidate)
    except msgspec.DecodeError as e:
        if not repair:
            raise JSONParseError(f"Invalid JSON: {e}", e) from e
        try:
            result = repair_json(candidate, return_objects=True)
        except Exception as repair_error:
            raise JSONParseError(f"JSON repair failed: {repair_error}", repair_error) from repair_error

    if not isinstance(result, dict):
        raise JSONParseError(f"Expected object, got {type(result).__name__}")
    return result


def safe_json_dumps(obj: Any, indent: int = 0, sort_keys: bool = False) -> str:
    """
    Encode for prompts and size checks.

    orjson handles the common case; stdlib json covers what it rejects
    (integers beyond 64 bits, indents other than 2). Unknown objects are
    encoded with ``str``.
    """
    if indent in (0, 2):
        option = (orjson.OPT_SORT_KEYS if sort_keys else 0) | (orjson.OPT_INDENT_2 if indent else 0)
        try:
            return orjson.dumps(obj, option=option, default=str).decode("utf-8")
        except TypeError:
            pass
    return json.dumps(obj, indent=indent or None, sort_keys=sort_keys, default=str)


__all__ = ["JSONParseError", "extract_json", "object_span", "strip_fences", "safe_json_dumps"]
