"""JSON patch applier: writes resolved values at JSONPath locations.

Each rule's path is evaluated with jsonpath-ng (extended grammar, so filter
expressions like ``$.users[?(@.age > 27)].name`` are supported) and every
match is turned into an RFC 6901 JSON Pointer. Values are written through the
pointer, which keeps "find" and "write" separate: a wildcard path writes once
per match, and a path that matches nothing writes nothing.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from typing import Any

from jsonpath_ng.exceptions import JSONPathError
from jsonpath_ng.ext import parse as jsonpath_parse
from jsonpath_ng.jsonpath import DatumInContext, Fields, Index

from restive_parser.errors import (
    CannotSetRootToPrimitiveError,
    InvalidJsonBodyError,
    InvalidPatchPathError,
)
from restive_parser.models import PatchRule
from restive_parser.resolver import VariableResolver, resolve_text

logger = logging.getLogger(__name__)

_NUMBER_LITERAL = re.compile(r"^[+-]?\d+(\.\d+)?([eE][+-]?\d+)?$")
_ARRAY_INDEX = re.compile(r"^\d+$")


async def apply_json_patches(
    json_text: str,
    rules: list[PatchRule],
    resolve_variables: VariableResolver,
) -> str:
    """Apply *rules* in order to a JSON document and return the new JSON text.

    Args:
        json_text: The body to patch.
        rules: Parsed patch rules (see patch_rules.parse_patch_header).
        resolve_variables: Resolver run on each rule's raw value before coercion.

    Returns:
        Compact JSON text. With no rules the input is returned untouched.

    Raises:
        InvalidJsonBodyError: If *json_text* is not valid JSON.
        InvalidPatchPathError: If a rule path is not valid JSONPath.
        CannotSetRootToPrimitiveError: If a rule replaces the root with a scalar.
    """
    if not rules:
        return json_text

    try:
        document = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise InvalidJsonBodyError(f"JSON patch: body is not valid JSON: {e}") from e

    for rule in rules:
        resolved = await resolve_text(resolve_variables, rule.raw_value)
        value = coerce_value(resolved)
        pointers = find_pointers(document, rule.path)
        logger.debug("JSON patch %s matched %d location(s)", rule.path, len(pointers))
        for pointer in pointers:
            document = set_by_pointer(document, pointer, value)

    return json.dumps(document, separators=(",", ":"), ensure_ascii=False)


def coerce_value(text: str) -> Any:
    """Interpret a resolved patch value.

    - JSON literals (object, array, true/false/null, numbers) are parsed.
      If parsing fails the text falls through to the string rules.
    - A value wrapped in matching single or double quotes loses the quotes.
    - Anything else is kept as the original string (whitespace included).
    """
    trimmed = text.strip()

    if (
        trimmed.startswith(("{", "["))
        or trimmed in ("true", "false", "null")
        or _NUMBER_LITERAL.match(trimmed)
    ):
        try:
            return json.loads(trimmed)
        except json.JSONDecodeError:
            pass

    if trimmed[:1] in ("'", '"') and trimmed.endswith(trimmed[0]):
        return trimmed[1:-1]

    return text


@lru_cache(maxsize=256)
def _compile(path: str) -> Any:
    try:
        return jsonpath_parse(path)
    except (JSONPathError, ValueError) as e:
        raise InvalidPatchPathError(f"JSON patch: invalid JSONPath '{path}': {e}") from e


def find_pointers(document: Any, path: str) -> list[str]:
    """Evaluate *path* against *document* and return one JSON Pointer per match.

    The root itself is the empty pointer ``""``.

    Raises:
        InvalidPatchPathError: If *path* is not valid JSONPath.
    """
    matches = _compile(path).find(document)
    return [_datum_to_pointer(match) for match in matches]


def _datum_to_pointer(datum: DatumInContext) -> str:
    """Walk a match's context chain up to the root, collecting segments."""
    segments: list[str] = []
    current: DatumInContext | None = datum
    while current is not None:
        step = current.path
        if isinstance(step, Fields):
            segments.append(str(step.fields[0]))
        elif isinstance(step, Index):
            index = step.indices[0]
            if index < 0 and current.context is not None:
                index += len(current.context.value)
            segments.append(str(index))
        current = current.context
    return "".join("/" + _escape_segment(s) for s in reversed(segments))


def _escape_segment(segment: str) -> str:
    return segment.replace("~", "~0").replace("/", "~1")


def _unescape_segment(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def split_pointer(pointer: str) -> list[str]:
    """Split a JSON Pointer into unescaped segments. ``""`` is the root (no segments)."""
    if not pointer:
        return []
    return [_unescape_segment(part) for part in pointer.split("/")[1:]]


def set_by_pointer(document: Any, pointer: str, value: Any) -> Any:
    """Write *value* at *pointer* and return the (possibly replaced) document.

    Root writes replace every key of an object document with the keys of an
    object value; a JSON array value replaces the root outright. Missing or
    null intermediate containers are created as objects. Writing past the end
    of an array pads it with nulls.

    Raises:
        CannotSetRootToPrimitiveError: If *pointer* is the root and *value* is
            not an object or array.
        InvalidPatchPathError: If an intermediate location holds a scalar.
    """
    segments = split_pointer(pointer)
    if not segments:
        if isinstance(value, dict) and isinstance(document, dict):
            document.clear()
            document.update(value)
            return document
        if isinstance(value, (dict, list)):
            return value
        raise CannotSetRootToPrimitiveError()

    parent = document
    for segment in segments[:-1]:
        child = _get_child(parent, segment, pointer)
        if child is None:
            child = {}
            _set_child(parent, segment, child, pointer)
        parent = child

    _set_child(parent, segments[-1], value, pointer)
    return document


def _get_child(container: Any, segment: str, pointer: str) -> Any:
    if isinstance(container, dict):
        return container.get(segment)
    if isinstance(container, list) and _ARRAY_INDEX.match(segment):
        index = int(segment)
        return container[index] if index < len(container) else None
    raise InvalidPatchPathError(
        f"JSON patch: cannot descend into {type(container).__name__} at '{segment}' of '{pointer}'"
    )


def _set_child(container: Any, segment: str, value: Any, pointer: str) -> None:
    if isinstance(container, dict):
        container[segment] = value
        return
    if isinstance(container, list) and _ARRAY_INDEX.match(segment):
        index = int(segment)
        if index >= len(container):
            container.extend([None] * (index + 1 - len(container)))
        container[index] = value
        return
    raise InvalidPatchPathError(
        f"JSON patch: cannot set '{segment}' on {type(container).__name__} at '{pointer}'"
    )
