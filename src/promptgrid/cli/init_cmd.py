# Copyright (c) Syntropy Systems
"""promptgrid init command."""

from pathlib import Path

import typer
from rich.console import Console

from promptgrid.config import PROJECT_DIR_NAME, PromptGridConfig, get_db_path, save_config
from promptgrid.db import init_db

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new promptgrid project.

    Creates a .promptgrid directory with configuration and database.
    """
    project_dir = path.resolve() / PROJECT_DIR_NAME

    if project_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {project_dir}")
        return

    project_dir.mkdir(parents=True)
    config_path = save_config(project_dir, PromptGridConfig())

    db_path = get_db_path(project_dir)
    init_db(db_path)

    console.print(f"[green]Initialized promptgrid project:[/green] {project_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]database:[/dim] {db_path}")
