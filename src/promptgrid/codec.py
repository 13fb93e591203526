# Copyright (c) Syntropy Systems
"""Packing of model results into the single string a cell can hold.

Stored format::

    <answer>__TIMING__<duration_ms>[__USAGE__<prompt>,<completion>,<total>]

The format is shared with previously persisted data and is reproduced
byte-for-byte. Decoding splits on the first occurrence of each delimiter, so
an answer that itself contains ``__TIMING__`` or ``__USAGE__`` is misparsed.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from promptgrid.models.result import (
    CellState,
    DecodedResponse,
    Failed,
    Pending,
    Succeeded,
    TokenUsage,
    Unset,
)

logger = logging.getLogger(__name__)

TIMING_DELIMITER = "__TIMING__"
USAGE_DELIMITER = "__USAGE__"
LOADING_SENTINEL = "<loading>"
ERROR_PREFIX = "Error: "
USAGE_FIELD_COUNT = 3


def _format_number(value: Union[int, float]) -> str:
    """Render a number the way a JavaScript runtime would stringify it."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def encode_response(
    text: str,
    duration_ms: Union[int, float],
    usage: Optional[TokenUsage] = None,
) -> str:
    """Encode an answer, its latency and optional token usage."""
    if TIMING_DELIMITER in text or USAGE_DELIMITER in text:
        logger.warning(
            "Response text contains a codec delimiter; it will not decode cleanly"
        )

    encoded = f"{text}{TIMING_DELIMITER}{_format_number(duration_ms)}"
    if usage is not None:
        encoded += (
            f"{USAGE_DELIMITER}{usage.prompt_tokens},"
            f"{usage.completion_tokens},{usage.total_tokens}"
        )
    return encoded


def _parse_duration(raw: str) -> Optional[float]:
    try:
        return float(raw)
    except ValueError:
        return None


def _parse_usage(raw: str) -> Optional[TokenUsage]:
    parts = raw.split(",")
    if len(parts) != USAGE_FIELD_COUNT:
        return None
    try:
        prompt_tokens, completion_tokens, total_tokens = (int(p) for p in parts)
    except ValueError:
        return None
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


def decode_response(value: str) -> DecodedResponse:
    """Split a stored cell string back into text, duration and usage.

    Values written without timing (errors, legacy answers) decode to the
    whole string with no duration or usage.
    """
    text, sep, remainder = value.partition(TIMING_DELIMITER)
    if not sep:
        return DecodedResponse(text=value)

    duration_raw, usage_sep, usage_raw = remainder.partition(USAGE_DELIMITER)
    return DecodedResponse(
        text=text,
        duration_ms=_parse_duration(duration_raw),
        usage=_parse_usage(usage_raw) if usage_sep else None,
    )


def format_error(message: str) -> str:
    """Build the user-visible cell text for a failure."""
    return f"{ERROR_PREFIX}{message}"


def is_error(value: Optional[str]) -> bool:
    """Whether a stored value follows the error prefix convention."""
    return bool(value) and value.startswith(ERROR_PREFIX)


def is_loading(value: Optional[str]) -> bool:
    """Whether a stored value is the in-flight sentinel."""
    return value == LOADING_SENTINEL


def cell_state(value: Optional[str]) -> CellState:
    """Interpret a stored cell string as an explicit state."""
    if not value:
        return Unset()
    if value == LOADING_SENTINEL:
        return Pending()
    if value.startswith(ERROR_PREFIX):
        return Failed(message=value[len(ERROR_PREFIX):])

    decoded = decode_response(value)
    return Succeeded(
        text=decoded.text,
        duration_ms=decoded.duration_ms,
        usage=decoded.usage,
    )
