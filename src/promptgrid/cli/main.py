# Copyright (c) Syntropy Systems
"""Main CLI entry point for promptgrid."""

import typer

from promptgrid.cli.init_cmd import init
from promptgrid.cli.inputs import input_app, var_app
from promptgrid.cli.prompts import list_prompts, models, new, revise, schema, versions
from promptgrid.cli.run import run
from promptgrid.cli.show import show

app = typer.Typer(
    name="promptgrid",
    help=(
        "Test one prompt against many inputs and models at once. "
        "Version instructions, compare answers, latency and cost."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(init)
_ = app.command()(new)
_ = app.command(name="list")(list_prompts)
_ = app.command()(revise)
_ = app.command()(versions)
_ = app.command()(models)
_ = app.command()(schema)
_ = app.command()(run)
_ = app.command()(show)

# Register sub-apps
app.add_typer(input_app, name="input")
app.add_typer(var_app, name="var")


if __name__ == "__main__":
    app()
