# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for promptgrid."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, JsonValue
from pydantic.alias_generators import to_camel
from typing_extensions import TypeAlias

JSONValue: TypeAlias = JsonValue


class PromptGridBaseModel(BaseModel):
    """Base model with shared config for promptgrid schemas.

    Attributes are snake_case in Python and camelCase on the wire so stored
    snapshots keep the field names existing data was written with.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class FrozenModel(PromptGridBaseModel):
    """Immutable record; updates go through ``model_copy``."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        frozen=True,
    )
