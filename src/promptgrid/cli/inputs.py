# Copyright (c) Syntropy Systems
"""promptgrid input and var subcommand groups."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from promptgrid.cli.workspace import fail, open_workspace, resolve_prompt, resolve_row, short_id
from promptgrid.table_io import describe_json_input, export_rows, import_rows

console = Console()


def list_inputs(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
) -> None:
    """List input rows, newest first."""
    with open_workspace(save=False) as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)

    if not prompt.input_rows:
        console.print("[dim]No input rows[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("ID", style="dim")
    table.add_column("Input")
    for number, row in enumerate(prompt.input_rows, 1):
        table.add_row(str(number), short_id(row.id), row.input or "[dim](empty)[/dim]")
    console.print(table)


def add(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    text: str = typer.Argument("", help="Input text"),
) -> None:
    """Add an input row at the top of the list."""
    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        row_id = ws.store.add_input_row(prompt.id, text)

    console.print(f"[green]Added input row[/green] {row_id}")


def edit(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    row_ref: str = typer.Argument(..., help="Row number or id"),
    text: str = typer.Argument(..., help="New input text"),
) -> None:
    """Replace the text of an input row."""
    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        row = resolve_row(prompt, row_ref)
        ws.store.update_input_row(prompt.id, row.id, text)

    console.print(f"[green]Updated input row[/green] {short_id(row.id)}")


def rm(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    row_ref: str = typer.Argument(..., help="Row number or id"),
) -> None:
    """Remove an input row and its results in every version."""
    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        row = resolve_row(prompt, row_ref)
        ws.store.remove_input_row(prompt.id, row.id)

    console.print(f"[green]Removed input row[/green] {short_id(row.id)}")


def import_inputs(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    source: str = typer.Argument("-", help="JSON file, or - for stdin"),
) -> None:
    """Replace all input rows with rows read from JSON."""
    if source == "-":
        text = sys.stdin.read()
    else:
        path = Path(source)
        if not path.exists():
            fail(f"File not found: {path}")
        text = path.read_text()

    status = describe_json_input(text)
    if not status.is_valid:
        fail(status.message)

    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        try:
            row_ids = import_rows(ws.store, prompt.id, text)
        except ValueError as e:
            fail(str(e))

    console.print(f"[green]Imported {len(row_ids)} input row(s)[/green]")


def export_inputs(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file"),
) -> None:
    """Print the input rows as a JSON array."""
    with open_workspace(save=False) as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        text = export_rows(ws.store, prompt.id)

    if output is None:
        typer.echo(text)
        return
    _ = output.write_text(text + "\n")
    console.print(f"[green]Exported to[/green] {output}")


def list_vars(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
) -> None:
    """List variables and their values."""
    with open_workspace(save=False) as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)

    if not prompt.variables:
        console.print("[dim]No variables[/dim]")
        return
    for name, value in prompt.variables.items():
        console.print(f"{name} = {value}" if value else f"{name} [dim](unset)[/dim]")


def set_var(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    assignment: str = typer.Argument(..., help="Variable in name=value format"),
) -> None:
    """Set a variable value."""
    name, sep, value = assignment.partition("=")
    if not sep or not name.strip():
        fail(f"Invalid assignment: {assignment}. Use name=value")

    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        ws.store.set_variable(prompt.id, name.strip(), value)

    console.print(f"[green]Set[/green] {name.strip()} = {value}")


def rm_var(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    name: str = typer.Argument(..., help="Variable name"),
) -> None:
    """Remove a variable."""
    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        if name not in prompt.variables:
            fail(f"Variable {name} not found")
        ws.store.delete_variable(prompt.id, name)

    console.print(f"[green]Removed[/green] {name}")


input_app = typer.Typer(
    name="input",
    help="Manage the test inputs of a prompt.",
    no_args_is_help=True,
)

# Register subcommands
_ = input_app.command(name="list")(list_inputs)
_ = input_app.command()(add)
_ = input_app.command()(edit)
_ = input_app.command()(rm)
_ = input_app.command(name="import")(import_inputs)
_ = input_app.command(name="export")(export_inputs)

var_app = typer.Typer(
    name="var",
    help="Manage template variables of a prompt.",
    no_args_is_help=True,
)

_ = var_app.command(name="list")(list_vars)
_ = var_app.command(name="set")(set_var)
_ = var_app.command(name="rm")(rm_var)
