# Copyright (c) Syntropy Systems
"""promptgrid run command."""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console

from promptgrid.cli.show import render_matrix
from promptgrid.cli.workspace import fail, open_workspace, resolve_prompt, resolve_row, resolve_version
from promptgrid.providers import KeyRing, ProviderInvoker
from promptgrid.runner import NoRunnableInputError, PromptRunner, RunOptions
from promptgrid.table_io import check_readiness

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from promptgrid.config import PromptGridConfig
    from promptgrid.models.prompt import InputRow
    from promptgrid.runner import RunResult

console = Console()


def build_invoker(config: PromptGridConfig) -> ProviderInvoker:
    """Create the provider invoker for a project configuration."""
    return ProviderInvoker(
        KeyRing(config.api_keys),
        timeout=config.request_timeout,
        base_urls=config.base_urls,
    )


async def _run_and_close(
    invoker: ProviderInvoker, work: Awaitable[RunResult | list[RunResult]]
) -> list[RunResult]:
    try:
        result = await work
    finally:
        await invoker.aclose()
    return result if isinstance(result, list) else [result]


def _dispatch(
    runner: PromptRunner,
    options: RunOptions,
    model_ids: list[str],
    row: Optional[InputRow],
) -> Awaitable[RunResult | list[RunResult]]:
    if row is not None and len(model_ids) == 1:
        return runner.run_single_cell(model_ids[0], row.input, row.id, options)
    if row is not None:
        return runner.run_all_models_for_row(model_ids, row.input, row.id, options)
    if len(model_ids) == 1:
        return runner.run_model_for_all_rows(model_ids[0], options)
    return runner.run_entire_table(model_ids, options)


def run(
    prompt_ref: str = typer.Argument(..., help="Prompt id or prefix"),
    version_ref: Optional[str] = typer.Option(None, "--version", "-v", help="Version number or id"),
    model: Optional[list[str]] = typer.Option(
        None,
        "--model", "-m",
        help="Model to run (repeatable; default: the version's selected models)",
    ),
    row_ref: Optional[str] = typer.Option(
        None,
        "--row", "-r",
        help="Only run this input row (number or id)",
    ),
    full: bool = typer.Option(False, "--full", help="Do not truncate responses"),
) -> None:
    """Run a prompt version against its inputs and models.

    Every (input, model) pair runs concurrently; results are saved as they
    arrive.
    """
    with open_workspace() as ws:
        prompt = resolve_prompt(ws.store, prompt_ref)
        version = resolve_version(ws.store, prompt, version_ref)
        row = resolve_row(prompt, row_ref) if row_ref is not None else None
        model_ids = list(model) if model else ws.store.get_selected_models(
            prompt.id, version.version_id
        )
        if not model_ids:
            fail("No models selected")

        invoker = build_invoker(ws.config)
        if row is None:
            readiness = check_readiness(
                ws.store.get_test_matrix(prompt.id, version.version_id),
                model_ids,
                invoker,
                ws.catalog,
            )
            for message in readiness.messages:
                console.print(f"[yellow]Warning:[/yellow] {message}")

        runner = PromptRunner(ws.store, invoker, invoker)
        options = RunOptions(
            prompt_id=prompt.id,
            version_id=version.version_id,
            content=version.content,
        )
        try:
            work = _dispatch(runner, options, model_ids, row)
            results = asyncio.run(_run_and_close(invoker, work))
        except NoRunnableInputError as e:
            fail(str(e))

        failed = sum(1 for r in results if not r.ok)
        table = render_matrix(
            ws.store,
            ws.catalog,
            resolve_prompt(ws.store, prompt.id),
            version,
            models=model_ids,
            full=full,
        )

    console.print(table)
    summary = f"Completed {len(results)} request(s)"
    if failed:
        console.print(f"[yellow]{summary}, {failed} failed[/yellow]")
    else:
        console.print(f"[green]{summary}[/green]")
