# Copyright (c) Syntropy Systems
"""Shared project loading and lookup helpers for promptgrid commands."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, NoReturn, Optional

import typer
from rich.console import Console

from promptgrid.catalog import ModelCatalog
from promptgrid.config import PromptGridConfig, get_db_path, load_config, require_project_dir
from promptgrid.store import TestMatrixStore
from promptgrid.sync import AutoSync, SQLiteSnapshotBackend

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from promptgrid.models.prompt import InputRow, Prompt, PromptVersion

console = Console()


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


@dataclass
class Workspace:
    """An opened project: its config and a store loaded from disk."""

    project_dir: Path
    config: PromptGridConfig
    catalog: ModelCatalog
    store: TestMatrixStore
    sync: AutoSync


@contextmanager
def open_workspace(save: bool = True) -> Iterator[Workspace]:
    """Load the project store and write it back when the block exits.

    Changes are only written when the block exits without an exception.
    """
    try:
        project_dir = require_project_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    config = load_config(project_dir)
    catalog = ModelCatalog()
    store = TestMatrixStore(
        catalog=catalog, default_models=config.default_models or None
    )
    sync = AutoSync(
        store,
        SQLiteSnapshotBackend(get_db_path(project_dir)),
        debounce_seconds=config.sync_debounce_seconds,
    )
    _ = sync.load()
    sync.start()
    try:
        yield Workspace(
            project_dir=project_dir,
            config=config,
            catalog=catalog,
            store=store,
            sync=sync,
        )
        if save and not sync.flush():
            fail(f"Could not save changes: {sync.last_error}")
    finally:
        sync.stop()
        store.close()


def resolve_prompt(store: TestMatrixStore, ref: str) -> Prompt:
    """Find a prompt by id or unique id prefix."""
    matches = [p for p in store.prompts if p.id == ref or p.id.startswith(ref)]
    if not matches:
        fail(f"Prompt {ref} not found")
    if len(matches) > 1 and not any(p.id == ref for p in matches):
        fail(f"Prompt id {ref} is ambiguous")
    prompt = next((p for p in matches if p.id == ref), matches[0])
    store.set_active_prompt(prompt.id)
    return prompt


def resolve_version(
    store: TestMatrixStore, prompt: Prompt, ref: Optional[str] = None
) -> PromptVersion:
    """Find a version by 1-based number, id or id prefix; latest by default."""
    if ref is None:
        version = prompt.latest_version
    elif ref.isdigit() and 1 <= int(ref) <= len(prompt.versions):
        version = prompt.versions[int(ref) - 1]
    else:
        matches = [v for v in prompt.versions if v.version_id.startswith(ref)]
        version = matches[0] if len(matches) == 1 else None

    if version is None:
        fail(f"Version {ref} not found")
    store.set_active_version(prompt.id, version.version_id)
    return version


def resolve_row(prompt: Prompt, ref: str) -> InputRow:
    """Find an input row by 1-based position, id or id prefix."""
    if ref.isdigit() and 1 <= int(ref) <= len(prompt.input_rows):
        return prompt.input_rows[int(ref) - 1]
    matches = [r for r in prompt.input_rows if r.id.startswith(ref)]
    if len(matches) != 1:
        fail(f"Input row {ref} not found")
    return matches[0]


def short_id(value: str) -> str:
    return value[:8]


def version_label(prompt: Prompt, version: PromptVersion) -> str:
    """``v<n>`` plus the title when the version has one."""
    number = next(
        (i for i, v in enumerate(prompt.versions, 1) if v.version_id == version.version_id),
        0,
    )
    return f"v{number} {version.title}".rstrip()
