"""Best-effort inference of tool arguments from loosely formed input.

The language model may hand over well-formed arguments, a bare scalar, or a
line of free text. `infer_arguments` turns any of these into an argument set
that is structurally valid for the tool's schema. It never raises for
incomplete input: missing required parameters are filled with defaults and
reported as warnings, and the remote tool decides whether they are usable.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from agentlink.tools.schema import ParameterSpec, ToolSchema

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"\d+(?:\.\d+)?")

FALLBACK_KEYWORDS = ("query", "search", "name", "id", "text")

_PRIORITY_TIERS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("query", "search"), 10),
    (("name", "title"), 9),
    (("id",), 8),
    (("category", "type"), 7),
    (("text", "content"), 6),
    (("description", "summary"), 5),
)
_ENUM_PRIORITY = 4
_DEFAULT_PRIORITY = 1


@dataclass(frozen=True)
class InferredArguments:
    """An inferred argument set and the shortfalls met while building it."""

    arguments: dict[str, Any]
    warnings: tuple[str, ...] = ()


def parameter_priority(param: ParameterSpec) -> int:
    """Rank a string parameter for free-text token assignment. Higher fills first."""
    name = param.name.lower()
    for keywords, priority in _PRIORITY_TIERS:
        if any(keyword in name for keyword in keywords):
            return priority
    if param.enum:
        return _ENUM_PRIORITY
    return _DEFAULT_PRIORITY


def coerce_value(value: Any, param: ParameterSpec) -> Any:
    """Convert a value to the parameter's declared type.

    Numbers that do not parse become 0. Unknown types pass through unchanged.
    """
    if value is None:
        return None

    match param.type:
        case "number":
            return _to_float(value)
        case "integer":
            return math.floor(_to_float(value))
        case "boolean":
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                return value.strip().lower() in ("true", "1")
            if isinstance(value, int | float):
                return value != 0
            return bool(value)
        case "string":
            if isinstance(value, str):
                return value
            if isinstance(value, dict | list | bool):
                return json.dumps(value)
            return str(value)
        case "array":
            if isinstance(value, list):
                return value
            if isinstance(value, tuple):
                return list(value)
            return [value]
        case "object":
            return value if isinstance(value, dict) else {"value": value}
        case _:
            return value


def default_for(param: ParameterSpec) -> Any:
    """The placeholder used for a required parameter that could not be inferred."""
    match param.type:
        case "number" | "integer":
            return 0
        case "boolean":
            return False
        case "string":
            return param.enum[0] if param.enum else ""
        case "array":
            return []
        case "object":
            return {}
        case _:
            return None


def infer_arguments(schema: ToolSchema, raw: Any, tool_name: str | None = None) -> InferredArguments:
    """Turn raw caller input into an argument set for `schema`.

    - a mapping is taken as the candidate argument set as is
    - a single-parameter schema receives the whole input, coerced
    - free text against several parameters is split: numbers go to numeric
      parameters in declared order, words to enum matches first and then to
      string parameters by priority
    - anything else lands in the most likely single parameter

    The candidate is then cleaned: values are coerced to their declared
    types, undeclared keys are dropped and missing required parameters get
    defaults, each recorded as a warning.
    """
    candidate = _candidate_arguments(schema, raw)
    warnings: list[str] = []
    arguments = _clean(schema, candidate, warnings, tool_name)
    return InferredArguments(arguments=arguments, warnings=tuple(warnings))


def _candidate_arguments(schema: ToolSchema, raw: Any) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)

    params = schema.parameters
    if len(params) == 1:
        return {params[0].name: coerce_value(raw, params[0])}

    if isinstance(raw, str):
        assigned = _assign_free_text(schema, raw)
        if assigned:
            return assigned
        string_params = schema.of_type("string")
        if string_params:
            return {_best_keyword_match(string_params).name: raw}

    target = schema.required[0] if schema.required else params[0]
    return {target.name: coerce_value(raw, target)}


def _assign_free_text(schema: ToolSchema, text: str) -> dict[str, Any]:
    result: dict[str, Any] = {}

    numbers = _NUMBER.findall(text)
    for param, number in zip(schema.of_type("number", "integer"), numbers):
        result[param.name] = coerce_value(number, param)

    string_params = schema.of_type("string")
    words = [word for word in text.split() if not _NUMBER.fullmatch(word)]
    if not string_params or not words:
        return result

    for param in string_params:
        if not param.enum:
            continue
        match = _match_enum(words, param.enum)
        if match is not None:
            index, value = match
            result[param.name] = value
            del words[index]

    # sorted() is stable, so ties keep declared order
    ranked = sorted(
        (p for p in string_params if p.name not in result),
        key=parameter_priority,
        reverse=True,
    )
    while words and ranked:
        param = ranked.pop(0)
        if not ranked:
            result[param.name] = " ".join(words)
            words = []
        else:
            result[param.name] = words.pop(0)
    return result


def _match_enum(words: list[str], allowed: tuple[str, ...]) -> tuple[int, str] | None:
    lookup = {value.lower(): value for value in reversed(allowed)}
    for index, word in enumerate(words):
        value = lookup.get(word.lower())
        if value is not None:
            return index, value
    return None


def _best_keyword_match(params: tuple[ParameterSpec, ...]) -> ParameterSpec:
    for keyword in FALLBACK_KEYWORDS:
        for param in params:
            if keyword in param.name.lower():
                return param
    return params[0]


def _clean(
    schema: ToolSchema,
    candidate: dict[str, Any],
    warnings: list[str],
    tool_name: str | None,
) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in candidate.items():
        param = schema.get(key)
        if param is None:
            logger.debug("Dropping undeclared argument %r for tool %r", key, tool_name)
            continue
        if value is None:
            continue
        cleaned[key] = coerce_value(value, param)

    for param in schema.required:
        if param.name in cleaned:
            continue
        message = f"Missing required parameter '{param.name}' for tool '{tool_name or '<unknown>'}'"
        logger.warning(message)
        warnings.append(message)
        cleaned[param.name] = default_for(param)
    return cleaned


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0
