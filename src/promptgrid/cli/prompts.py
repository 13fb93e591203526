# Copyright (c) Syntropy Systems
"""promptgrid commands for prompts, versions, models and output schemas."""
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from promptgrid.cli.workspace import (
    fail,
    open_workspace,
    resolve_prompt,
    resolve_version,
    short_id,
    version_label,
)
from promptgrid.providers import KeyRing
from promptgrid.validation import EXAMPLE_SCHEMAS, compile_schema, example_schema

console = Console()


def format_timestamp(ms: int) -> str:
    """Format epoch milliseconds as local date and time."""
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def parse_models(value: str) -> list[str]:
    return [m.strip() for m in value.split(",") if m.strip()]


def new(
    content: str = typer.Argument(..., help="Instruction text, may use {{var}} or ${var}"),
    title: str = typer.Option("", "--title", "-t", help="Version title"),
    models: Optional[str] = typer.Option(
        None,
        "--models", "-m",
        help="Comma-separated model ids (default: configured defaults)",
    ),
) -> None:
    """Create a prompt with one version and an example input row."""
    with open_workspace() as ws:
        prompt_id = ws.store.create_prompt(content, title=title)
        version_id = ws.store.active_version_id
        if models is not None and version_id is not None:
            ws.store.set_selected_models(prompt_id, version_id, parse_models(models))

        selected = ws.store.get_selected_models(prompt_id, version_id)
        variables = ws.store.get_variables(prompt_id)

    console.print(f"[green]Created prompt[/green] {prompt_id}")
    console.print(f"  [dim]models:[/dim] {', '.join(selected) or '-'}")
    if variables:
        console.print(f"  [dim]variables:[/dim] {', '.join(variables)}")


def list_prompts() -> None:
    """List prompts."""
    with open_workspace(save=False) as ws:
        prompts = ws.store.prompts

    if not prompts:
        console.print("[dim]No prompts found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Versions", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Instruction")

    for prompt in prompts:
        latest = prompt.latest_version
        content = latest.content if latest else ""
        table.add_row(
            short_id(prompt.id),
            (latest.title if latest else "") or "-",
            str(len(prompt.versions)),
            str(len(prompt.input_rows)),
            content if len(content) <= 40 else content[:37] + "...",
        )

    console.print(table)


def revise(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    content: str = typer.Argument(..., help="New instruction text"),
    base: Optional[str] = typer.Option(
        None,
        "--from", "-f",
        help="Version to copy settings from (default: latest)",
    ),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Title for the new version"),
) -> None:
    """Add a new version of a prompt with different instruction text."""
    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        if base is not None:
            _ = resolve_version(ws.store, prompt, base)
        version_id = ws.store.revise_instruction(prompt.id, content)
        if version_id is None:
            fail(f"Prompt {prompt_ref} not found")
        if title is not None:
            ws.store.set_version_title(prompt.id, version_id, title)
        added = [
            name for name in ws.store.get_variables(prompt.id)
            if name not in prompt.variables
        ]
        number = len(prompt.versions) + 1

    console.print(f"[green]Created version v{number}[/green] {version_id}")
    if added:
        console.print(f"  [dim]new variables:[/dim] {', '.join(added)}")


def versions(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    delete: Optional[str] = typer.Option(
        None,
        "--delete", "-d",
        help="Delete a version (number or id); the last one is kept",
    ),
    rename: Optional[str] = typer.Option(
        None,
        "--rename",
        help="Rename the latest (or --version) version",
    ),
    version_ref: Optional[str] = typer.Option(None, "--version", "-v", help="Version to rename"),
) -> None:
    """List the versions of a prompt."""
    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        if delete is not None:
            target = resolve_version(ws.store, prompt, delete)
            if len(prompt.versions) <= 1:
                fail("Cannot delete the only version of a prompt")
            ws.store.delete_version(prompt.id, target.version_id)
            console.print(f"[green]Deleted version[/green] {short_id(target.version_id)}")
        if rename is not None:
            target = resolve_version(ws.store, prompt, version_ref)
            ws.store.set_version_title(prompt.id, target.version_id, rename)
        prompt = resolve_prompt(ws.store, prompt.id)

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Created")
    table.add_column("Models")
    table.add_column("Results", justify="right")

    for number, version in enumerate(prompt.versions, 1):
        cells = sum(len(models) for models in version.responses.values())
        table.add_row(
            str(number),
            short_id(version.version_id),
            version.title or "-",
            format_timestamp(version.timestamp),
            ", ".join(version.selected_models or []) or "-",
            str(cells),
        )

    console.print(table)


def models(
    prompt_ref: Optional[str] = typer.Argument(
        None,
        help="Prompt id or prefix (omit to list available models)",
    ),
    set_models: Optional[str] = typer.Option(
        None,
        "--set", "-s",
        help="Comma-separated model ids to select",
    ),
    version_ref: Optional[str] = typer.Option(None, "--version", "-v", help="Version number or id"),
) -> None:
    """List available models, or show/set the models selected for a prompt."""
    with open_workspace(save=prompt_ref is not None) as ws:
        if prompt_ref is None:
            key_ring = KeyRing(ws.config.api_keys)
            table = Table(show_header=True, header_style="bold")
            table.add_column("Model")
            table.add_column("Name")
            table.add_column("Provider")
            table.add_column("Price")
            table.add_column("Key")
            for info in ws.catalog:
                has_key = key_ring.has_valid_key_for_model(info.id)
                table.add_row(
                    info.id,
                    info.name,
                    info.provider,
                    info.price_tier,
                    "[green]yes[/green]" if has_key else "[dim]no[/dim]",
                )
            console.print(table)
            return

        prompt = resolve_prompt(ws.store, prompt_ref)
        version = resolve_version(ws.store, prompt, version_ref)
        if set_models is not None:
            chosen = parse_models(set_models)
            unknown = [m for m in chosen if m not in ws.catalog]
            if unknown:
                console.print(f"[yellow]Unknown models:[/yellow] {', '.join(unknown)}")
            ws.store.set_selected_models(prompt.id, version.version_id, chosen)
        selected = ws.store.get_selected_models(prompt.id, version.version_id)
        label = version_label(prompt, version)

    console.print(f"[bold]{label}[/bold] models: {', '.join(selected) or '-'}")


def schema(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    file: Optional[Path] = typer.Option(
        None,
        "--file", "-f",
        help="Read the JSON schema from a file",
    ),
    example: Optional[str] = typer.Option(
        None,
        "--example", "-e",
        help=f"Use a built-in example ({', '.join(EXAMPLE_SCHEMAS)})",
    ),
    clear: bool = typer.Option(False, "--clear", help="Remove the output schema"),
    version_ref: Optional[str] = typer.Option(None, "--version", "-v", help="Version number or id"),
) -> None:
    """Show or set the JSON schema responses are validated against."""
    if example is not None and example not in EXAMPLE_SCHEMAS:
        fail(f"Unknown example {example}. Choose from: {', '.join(EXAMPLE_SCHEMAS)}")

    text: Optional[str] = None
    if clear:
        text = ""
    elif example is not None:
        text = example_schema(example)
    elif file is not None:
        if not file.exists():
            fail(f"File not found: {file}")
        text = file.read_text()
        try:
            _ = json.loads(text)
        except ValueError as e:
            fail(f"Invalid JSON schema format: {e}")

    with open_workspace(save=text is not None) as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        version = resolve_version(ws.store, prompt, version_ref)
        if text is not None:
            ws.store.set_output_schema(prompt.id, version.version_id, text)
        current = ws.store.get_output_schema(prompt.id, version.version_id)

    if text is not None:
        console.print("[green]Schema cleared[/green]" if clear else "[green]Schema saved[/green]")
        return
    if not current:
        console.print("[dim]No output schema[/dim]")
        return
    if compile_schema(current) is None:
        console.print("[yellow]Stored schema is not valid JSON[/yellow]")
    console.print(Syntax(current, "json"))
