# Copyright (c) Syntropy Systems
"""Pydantic models for model completions, decoded cells and validation."""

from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import Field
from typing_extensions import TypeAlias

from .base import FrozenModel, JSONValue


class TokenUsage(FrozenModel):
    """Token counts reported by a provider for one completion."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatMessage(FrozenModel):
    """One message sent to a model."""

    role: Literal["system", "user", "assistant"]
    content: str


class Completion(FrozenModel):
    """Result of a single model invocation."""

    text: str
    usage: Optional[TokenUsage] = None


class DecodedResponse(FrozenModel):
    """A stored cell string unpacked into its parts."""

    text: str
    duration_ms: Optional[float] = None
    usage: Optional[TokenUsage] = None


class ValidationResult(FrozenModel):
    """Outcome of checking one response against an output schema."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    parsed_data: Optional[JSONValue] = None
    raw_response: str = ""


class Unset(FrozenModel):
    """Cell that has never been run."""

    kind: Literal["unset"] = "unset"


class Pending(FrozenModel):
    """Cell with a request in flight."""

    kind: Literal["pending"] = "pending"


class Succeeded(FrozenModel):
    """Cell holding a model answer."""

    kind: Literal["succeeded"] = "succeeded"
    text: str
    duration_ms: Optional[float] = None
    usage: Optional[TokenUsage] = None


class Failed(FrozenModel):
    """Cell holding an error message."""

    kind: Literal["failed"] = "failed"
    message: str


CellState: TypeAlias = Union[Unset, Pending, Succeeded, Failed]
