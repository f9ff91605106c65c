"""Main Typer application — imports and registers all CLI commands.

Entry point: ``runwitness`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer
from rich.console import Console

from runwitness import __version__
from runwitness.cli.commands.attest import attest_cmd
from runwitness.cli.commands.finish import finish_cmd
from runwitness.cli.commands.start import start_cmd

app = typer.Typer(
    name="runwitness",
    help="runwitness: watch build runs and attest to the artifacts they produce.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="attest", help="Watch a run and emit its provenance attestation.")(attest_cmd)
app.command(name="start", help="Snapshot artifact sources and write a partial attestation.")(start_cmd)
app.command(name="finish", help="Complete a partial attestation after the run.")(finish_cmd)


@app.command(name="version", help="Show the runwitness version.")
def version_cmd() -> None:
    Console().print(f"runwitness [bold]{__version__}[/bold]")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
