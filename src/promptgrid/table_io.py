# Copyright (c) Syntropy Systems
"""Bulk import and export of test inputs, and pre-run readiness checks."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Optional

from promptgrid.catalog import ModelCatalog
from promptgrid.models.base import FrozenModel

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from promptgrid.models.prompt import InputRow, TestMatrixRow
    from promptgrid.providers import Entitlements
    from promptgrid.store import TestMatrixStore

logger = logging.getLogger(__name__)

ITEM_TEXT_KEYS = ("input", "text", "message", "content")
ARRAY_KEYS = ("items", "data", "inputs", "messages", "content")
DEFAULT_EXPORT = ["hello"]


class JsonInputStatus(FrozenModel):
    """What importing a piece of JSON text would do."""

    is_valid: bool
    message: str = ""
    is_empty: bool = False


class Readiness(FrozenModel):
    """Whether a full run can start, with the reasons it cannot."""

    is_valid: bool
    messages: list[str] = []


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return _compact(value)


def _item_text(item: Any) -> str:
    if isinstance(item, dict):
        for key in ITEM_TEXT_KEYS:
            if item.get(key):
                return _to_text(item[key])
    return _to_text(item)


def _object_values(data: dict[str, Any]) -> list[Any]:
    return [
        v for v in data.values()
        if v is not None and not isinstance(v, bool)
    ]


def _array_property(data: dict[str, Any]) -> Optional[list[Any]]:
    for key in ARRAY_KEYS:
        if isinstance(data.get(key), list):
            return data[key]
    return None


def rows_from_json(text: str) -> list[str]:
    """Turn JSON text into input strings, one per row.

    Accepts an array (strings, or objects carrying one of ``input``,
    ``text``, ``message`` or ``content``), an object wrapping such an array
    under ``items``, ``data``, ``inputs``, ``messages`` or ``content``, or any
    other object, whose values become rows.

    Raises:
        ValueError: If the text is not JSON or is a bare scalar.

    """
    data = json.loads(text.strip())

    if isinstance(data, list):
        return [_item_text(item) for item in data]

    if isinstance(data, dict):
        wrapped = _array_property(data)
        if wrapped is not None:
            return [_to_text(item) for item in wrapped]
        return [_to_text(v) for v in _object_values(data)]

    msg = "JSON input must be an array or object"
    raise ValueError(msg)


def describe_json_input(text: str) -> JsonInputStatus:
    """Summarise JSON input text before it is imported."""
    trimmed = text.strip()
    if not trimmed:
        return JsonInputStatus(is_valid=True, is_empty=True)

    try:
        data = json.loads(trimmed)
    except ValueError:
        return JsonInputStatus(is_valid=False, message="Invalid - JSON format error")

    if isinstance(data, list):
        if not data:
            return JsonInputStatus(is_valid=True, is_empty=True)
        return JsonInputStatus(is_valid=True, message=f"Valid - {len(data)} rows detected")

    if isinstance(data, dict):
        wrapped = _array_property(data)
        if wrapped is not None:
            if not wrapped:
                return JsonInputStatus(is_valid=True, is_empty=True)
            return JsonInputStatus(
                is_valid=True, message=f"Valid - {len(wrapped)} rows detected"
            )
        values = _object_values(data)
        if values:
            return JsonInputStatus(
                is_valid=True,
                message=f"Valid JSON - Will create {len(values)} row(s) from object values",
            )
        return JsonInputStatus(
            is_valid=True, message="Valid JSON - No processable values found"
        )

    return JsonInputStatus(is_valid=False, message="Invalid - must be array or object")


def import_rows(store: TestMatrixStore, prompt_id: str, text: str) -> list[str]:
    """Replace every input row of a prompt with rows parsed from JSON.

    Rows keep the order they have in the JSON text. Returns the new row ids.
    """
    inputs = rows_from_json(text)
    prompt = store.get_prompt(prompt_id)
    if prompt is None:
        return []

    for row in prompt.input_rows:
        store.remove_input_row(prompt_id, row.id)

    # New rows are added at the top, so add them last-first.
    row_ids = [store.add_input_row(prompt_id, value) for value in reversed(inputs)]
    logger.info("Imported %d input rows into prompt %s", len(inputs), prompt_id)
    return [row_id for row_id in reversed(row_ids) if row_id is not None]


def export_rows(store: TestMatrixStore, prompt_id: str) -> str:
    """Serialise the non-blank input rows of a prompt as a JSON array."""
    prompt = store.get_prompt(prompt_id)
    rows = [r.input for r in (prompt.input_rows if prompt else []) if r.input.strip()]
    return json.dumps(rows or DEFAULT_EXPORT, indent=2, ensure_ascii=False)


def check_readiness(
    rows: Sequence[InputRow | TestMatrixRow],
    selected_models: Iterable[str],
    entitlements: Entitlements,
    catalog: Optional[ModelCatalog] = None,
) -> Readiness:
    """Report why a full-table run would not work, if anything."""
    catalog = catalog or ModelCatalog()
    models = list(selected_models)
    messages: list[str] = []

    if not rows:
        messages.append("No input rows available")
    elif not any(row.input.strip() for row in rows):
        messages.append("All input rows are empty")

    if not models:
        messages.append("No models selected")

    missing = [m for m in models if not entitlements.has_valid_key_for_model(m)]
    if missing:
        names = ", ".join(catalog.display_name(m) for m in missing)
        messages.append(f"Missing API keys for: {names}")

    return Readiness(is_valid=not messages, messages=messages)
