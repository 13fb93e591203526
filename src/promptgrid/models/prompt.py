# Copyright (c) Syntropy Systems
"""Pydantic models for prompts, versions and test inputs."""

from __future__ import annotations

import time
from typing import Optional
from uuid import uuid4

from pydantic import Field

from .base import FrozenModel
from .result import ValidationResult


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    """Generate a random identifier for prompts, versions and rows."""
    return str(uuid4())


class InputRow(FrozenModel):
    """One test input, shared by every version of a prompt."""

    id: str = Field(default_factory=new_id)
    input: str = ""
    timestamp: int = Field(default_factory=now_ms)


class PromptVersion(FrozenModel):
    """Snapshot of instruction text plus the results produced with it.

    ``responses`` and ``schema_validation_results`` are keyed by row id, then
    model id.
    """

    version_id: str = Field(default_factory=new_id)
    title: str = ""
    content: str = ""
    timestamp: int = Field(default_factory=now_ms)
    selected_models: Optional[list[str]] = None
    output_schema: str = ""
    responses: dict[str, dict[str, str]] = Field(default_factory=dict)
    schema_validation_results: dict[str, dict[str, ValidationResult]] = Field(
        default_factory=dict
    )


class Prompt(FrozenModel):
    """A named instruction template with its versions, inputs and variables."""

    id: str = Field(default_factory=new_id)
    versions: list[PromptVersion] = Field(default_factory=list)
    input_rows: list[InputRow] = Field(default_factory=list)
    variables: dict[str, str] = Field(default_factory=dict)

    def get_version(self, version_id: str) -> Optional[PromptVersion]:
        """Return the version with the given id, if present."""
        for version in self.versions:
            if version.version_id == version_id:
                return version
        return None

    @property
    def latest_version(self) -> Optional[PromptVersion]:
        """Most recently appended version."""
        return self.versions[-1] if self.versions else None


class TestMatrixRow(FrozenModel):
    """An input row joined with one version's responses for that row."""

    __test__ = False

    id: str
    input: str
    timestamp: int
    responses: dict[str, str] = Field(default_factory=dict)
