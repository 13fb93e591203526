# Copyright (c) Syntropy Systems
"""Checking model responses against a user-supplied JSON Schema.

The supported JSON-Schema subset is translated into pydantic types and
validated in strict mode:

- object (properties, required)
- array (items)
- string (enum, pattern, minLength, maxLength)
- number / integer (minimum, maximum)
- boolean, null
- oneOf / anyOf as a union

Anything else accepts any value.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Annotated, Any, Literal, Optional, Union, cast

from pydantic import (
    ConfigDict,
    Field,
    PydanticUserError,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    create_model,
)
from pydantic_core import SchemaError

from promptgrid.models.result import ValidationResult

logger = logging.getLogger(__name__)

FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\}|\[[\s\S]*?\])\s*```")
TRAILING_JSON = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])\Z")
LEADING_JSON = re.compile(r"\A(\{[\s\S]*\}|\[[\s\S]*\])")
ROOT_NAME = "SchemaNode"
TRANSLATED_KINDS = ("object", "array", "string", "number", "integer", "boolean", "null")

# Patterns follow Python's re so look-around assertions work.
_SCHEMA_CONFIG = ConfigDict(regex_engine="python-re")
_OBJECT_CONFIG = ConfigDict(extra="ignore", populate_by_name=False, regex_engine="python-re")


def _parses(candidate: str) -> bool:
    try:
        json.loads(candidate)
    except ValueError:
        return False
    return True


def extract_json(response: str) -> Optional[str]:
    """Pull the JSON document out of a model response.

    Tried in order: a fenced code block holding an object or array, the whole
    trimmed response, an object or array at the end of the text, then one at
    the start. Returns None when nothing matches.
    """
    fenced = FENCED_JSON.search(response)
    if fenced:
        return fenced.group(1)

    trimmed = response.strip()
    if _parses(trimmed):
        return trimmed

    for pattern in (TRAILING_JSON, LEADING_JSON):
        match = pattern.search(trimmed)
        if match and _parses(match.group(1)):
            return match.group(1)

    return None


def _union(members: list[Any]) -> Any:
    if not members:
        return Any
    if len(members) == 1:
        return members[0]
    return Union[tuple(members)]  # noqa: UP007


def _string_type(node: dict[str, Any]) -> Any:
    enum = node.get("enum")
    if isinstance(enum, list) and enum:
        return Literal[tuple(enum)]

    constraints: dict[str, Any] = {}
    if isinstance(node.get("pattern"), str):
        constraints["pattern"] = node["pattern"]
    if isinstance(node.get("minLength"), int):
        constraints["min_length"] = node["minLength"]
    if isinstance(node.get("maxLength"), int):
        constraints["max_length"] = node["maxLength"]
    if not constraints:
        return StrictStr
    return Annotated[StrictStr, Field(**constraints)]


def _number_type(node: dict[str, Any]) -> Any:
    base: Any = StrictInt if node.get("type") == "integer" else StrictFloat
    constraints: dict[str, Any] = {}
    if isinstance(node.get("minimum"), (int, float)):
        constraints["ge"] = node["minimum"]
    if isinstance(node.get("maximum"), (int, float)):
        constraints["le"] = node["maximum"]
    if not constraints:
        return base
    return Annotated[base, Field(**constraints)]


def _object_type(node: dict[str, Any], name: str) -> Any:
    properties = node.get("properties")
    if not isinstance(properties, dict):
        properties = {}
    required = node.get("required")
    required_keys = set(required) if isinstance(required, list) else set()

    fields: dict[str, Any] = {}
    for index, (key, sub_schema) in enumerate(properties.items()):
        annotation = schema_to_type(cast("dict[str, Any]", sub_schema), f"{name}_{index}")
        if key in required_keys:
            fields[f"field_{index}"] = (annotation, Field(alias=key))
        else:
            fields[f"field_{index}"] = (annotation, Field(default=None, alias=key))

    return create_model(name, __config__=_OBJECT_CONFIG, **fields)


def schema_to_type(node: dict[str, Any], name: str = ROOT_NAME) -> Any:
    """Translate one JSON-Schema node into a type pydantic can validate."""
    if not isinstance(node, dict):
        return Any

    kind = node.get("type")
    if kind == "object":
        return _object_type(node, name)
    if kind == "array":
        items = node.get("items")
        item_type = schema_to_type(items, f"{name}_item") if isinstance(items, dict) else Any
        return list[item_type]
    if kind == "string":
        return _string_type(node)
    if kind in ("number", "integer"):
        return _number_type(node)
    if kind == "boolean":
        return StrictBool
    if kind == "null":
        return None

    for combinator in ("oneOf", "anyOf"):
        options = node.get(combinator)
        if isinstance(options, list) and options:
            return _union(
                [schema_to_type(opt, f"{name}_{i}") for i, opt in enumerate(options)]
            )

    return Any


def compile_schema(schema_text: str) -> Optional[TypeAdapter[Any]]:
    """Build a validator from JSON-Schema text.

    Returns None when the text is not JSON or pydantic cannot build a
    validator from it, e.g. for a malformed ``pattern``.
    """
    try:
        schema = json.loads(schema_text)
    except ValueError:
        logger.warning("Failed to parse JSON schema")
        return None

    try:
        annotation = schema_to_type(schema)
        if isinstance(schema, dict) and schema.get("type") == "object":
            # Generated models carry their own config.
            return TypeAdapter(annotation)
        return TypeAdapter(annotation, config=_SCHEMA_CONFIG)
    except (SchemaError, PydanticUserError, TypeError, re.error) as exc:
        logger.warning("Failed to build validator from JSON schema: %s", exc)
        return None


def _union_members(node: Any) -> list[tuple[int, Any]]:
    if not isinstance(node, dict) or node.get("type") in TRANSLATED_KINDS:
        return []
    for combinator in ("oneOf", "anyOf"):
        options = node.get(combinator)
        if isinstance(options, list) and options:
            return list(enumerate(options))
    return []


def _is_null(node: Any) -> bool:
    return isinstance(node, dict) and node.get("type") == "null"


def _union_member(
    members: list[tuple[int, Any]], name: str, label: str
) -> tuple[Any, str]:
    """Map a union member label from an error location back to its schema node."""
    for index, option in members:
        if label == f"{name}_{index}":
            return option, label
    if label.startswith("list["):
        for index, option in members:
            if isinstance(option, dict) and option.get("type") == "array":
                return option, f"{name}_{index}"
    return None, name


def _child(node: Any, name: str, part: Union[int, str]) -> tuple[Any, str]:
    if not isinstance(node, dict):
        return None, name
    kind = node.get("type")
    if kind == "object" and isinstance(node.get("properties"), dict):
        for index, key in enumerate(node["properties"]):
            if key == part:
                return node["properties"][key], f"{name}_{index}"
    if kind == "array" and isinstance(part, int) and isinstance(node.get("items"), dict):
        return node["items"], f"{name}_item"
    return None, name


def _error_path(loc: tuple[Union[int, str], ...], schema: Any) -> str:
    """Dotted data path for an error location.

    The location is walked alongside the schema so that the member labels
    pydantic inserts for unions are dropped and every data key is kept.
    """
    keys: list[str] = []
    parts = list(loc)
    node, name = schema, ROOT_NAME
    while parts:
        members = _union_members(node)
        if members:
            # Optional[X] validates as X and adds no member label.
            present = [(i, opt) for i, opt in members if not _is_null(opt)]
            if len(present) == 1:
                node, name = present[0][1], f"{name}_{present[0][0]}"
                continue
            if present and isinstance(parts[0], str):
                node, name = _union_member(present, name, parts.pop(0))
                continue
        part = parts.pop(0)
        keys.append(str(part))
        node, name = _child(node, name, part)
    return ".".join(keys)


def validate_response(response: str, schema_text: str) -> ValidationResult:
    """Check a model response against an output schema.

    Problems are reported in the result, never raised.
    """
    adapter = compile_schema(schema_text)
    if adapter is None:
        return ValidationResult(
            is_valid=False,
            errors=["Invalid JSON schema format"],
            raw_response=response,
        )

    json_text = extract_json(response)
    if json_text is None:
        return ValidationResult(
            is_valid=False,
            errors=["No valid JSON found in response"],
            raw_response=response,
        )

    try:
        data = json.loads(json_text)
    except ValueError as exc:
        return ValidationResult(
            is_valid=False,
            errors=[f"Invalid JSON format: {exc}"],
            raw_response=response,
        )

    try:
        validated = adapter.validate_python(data, strict=True)
    except ValidationError as exc:
        schema = json.loads(schema_text)
        return ValidationResult(
            is_valid=False,
            errors=[
                f"{_error_path(err['loc'], schema)}: {err['msg']}"
                for err in exc.errors()
            ],
            raw_response=response,
        )

    return ValidationResult(
        is_valid=True,
        parsed_data=adapter.dump_python(
            validated, mode="json", by_alias=True, exclude_unset=True
        ),
        raw_response=response,
    )


EXAMPLE_SCHEMAS: dict[str, dict[str, Any]] = {
    "user": {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"},
            "email": {"type": "string"},
            "age": {"type": "integer", "minimum": 0},
            "isActive": {"type": "boolean"},
        },
        "required": ["id", "name", "email"],
    },
    "product": {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"},
            "price": {"type": "number", "minimum": 0},
            "category": {"type": "string"},
            "tags": {"type": "array", "items": {"type": "string"}},
            "inStock": {"type": "boolean"},
        },
        "required": ["id", "name", "price"],
    },
    "article": {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "content": {"type": "string"},
            "author": {"type": "string"},
            "publishDate": {"type": "string"},
            "tags": {"type": "array", "items": {"type": "string"}},
            "readTime": {"type": "integer", "minimum": 1},
        },
        "required": ["title", "content", "author"],
    },
    "custom": {
        "type": "object",
        "properties": {
            "message": {"type": "string"},
            "status": {"type": "string", "enum": ["success", "error", "pending"]},
            "data": {"type": "object"},
        },
        "required": ["message", "status"],
    },
}


def example_schema(kind: str) -> str:
    """Return a ready-made example schema as pretty-printed JSON."""
    return json.dumps(EXAMPLE_SCHEMAS[kind], indent=2)
