# Copyright (c) Syntropy Systems
"""promptgrid show command."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from promptgrid.cli.workspace import open_workspace, resolve_prompt, resolve_version, version_label
from promptgrid.codec import cell_state
from promptgrid.models.result import Failed, Pending, Succeeded

if TYPE_CHECKING:
    from promptgrid.catalog import ModelCatalog
    from promptgrid.models.prompt import Prompt, PromptVersion
    from promptgrid.models.result import CellState, ValidationResult
    from promptgrid.store import TestMatrixStore

console = Console()

PREVIEW_CHARS = 200


def format_latency(duration_ms: float | None) -> str:
    """Format a latency in milliseconds to human readable."""
    if duration_ms is None:
        return "-"
    if duration_ms < 1000:
        return f"{duration_ms:.0f}ms"
    return f"{duration_ms / 1000:.1f}s"


def format_cost(cost: float | None) -> str:
    if cost is None:
        return ""
    if cost < 0.01:
        return f"${cost:.5f}"
    return f"${cost:.3f}"


def render_cell(
    state: CellState,
    model_id: str,
    catalog: ModelCatalog,
    validation: Optional[ValidationResult] = None,
    full: bool = False,
) -> str:
    """Rich markup for one cell."""
    if isinstance(state, Pending):
        return "[blue]running...[/blue]"
    if isinstance(state, Failed):
        return f"[red]Error: {escape(state.message)}[/red]"
    if not isinstance(state, Succeeded):
        return "[dim]-[/dim]"

    text = state.text.strip()
    if not full and len(text) > PREVIEW_CHARS:
        text = text[:PREVIEW_CHARS] + "..."

    details = [format_latency(state.duration_ms)]
    if state.usage is not None:
        details.append(f"{state.usage.total_tokens} tok")
        cost = catalog.cost_of(model_id, state.usage)
        if cost is not None:
            details.append(format_cost(cost))

    lines = [escape(text), f"[dim]{' | '.join(details)}[/dim]"]
    if validation is not None:
        if validation.is_valid:
            lines.append("[green]schema ok[/green]")
        else:
            lines.append(f"[red]schema: {escape('; '.join(validation.errors))}[/red]")
    return "\n".join(lines)


def render_matrix(
    store: TestMatrixStore,
    catalog: ModelCatalog,
    prompt: Prompt,
    version: PromptVersion,
    models: Optional[list[str]] = None,
    full: bool = False,
) -> Table:
    """Build the input x model table for one version."""
    model_ids = models if models is not None else store.get_selected_models(
        prompt.id, version.version_id
    )

    table = Table(
        title=f"{version_label(prompt, version)}: {escape(version.content)}",
        show_header=True,
        header_style="bold",
        show_lines=True,
    )
    table.add_column("Input")
    for model_id in model_ids:
        table.add_column(catalog.display_name(model_id))

    for row in store.get_test_matrix(prompt.id, version.version_id):
        cells = [
            render_cell(
                cell_state(row.responses.get(model_id)),
                model_id,
                catalog,
                store.get_validation_result(
                    prompt.id, version.version_id, row.id, model_id
                ),
                full=full,
            )
            for model_id in model_ids
        ]
        table.add_row(escape(row.input) or "[dim](empty)[/dim]", *cells)

    return table


def matrix_as_json(store: TestMatrixStore, prompt: Prompt, version: PromptVersion) -> str:
    """Dump the decoded cells of one version as JSON."""
    rows = []
    for row in store.get_test_matrix(prompt.id, version.version_id):
        cells = {}
        for model_id, value in row.responses.items():
            state = cell_state(value)
            validation = store.get_validation_result(
                prompt.id, version.version_id, row.id, model_id
            )
            cell = state.model_dump(mode="json", by_alias=True, exclude_none=True)
            if validation is not None:
                cell["validation"] = validation.model_dump(
                    mode="json", by_alias=True, exclude_none=True
                )
            cells[model_id] = cell
        rows.append({"id": row.id, "input": row.input, "cells": cells})
    return json.dumps(
        {"promptId": prompt.id, "versionId": version.version_id, "rows": rows},
        indent=2,
        ensure_ascii=False,
    )


def show(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    version_ref: Optional[str] = typer.Option(None, "--version", "-v", help="Version number or id"),
    full: bool = typer.Option(False, "--full", help="Do not truncate responses"),
    as_json: bool = typer.Option(False, "--json", help="Print decoded cells as JSON"),
) -> None:
    """Show the results matrix of a prompt version."""
    with open_workspace(save=False) as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        version = resolve_version(ws.store, prompt, version_ref)
        if as_json:
            typer.echo(matrix_as_json(ws.store, prompt, version))
            return
        table = render_matrix(ws.store, ws.catalog, prompt, version, full=full)

    console.print(table)
