"""Helpers shared by the attestation commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from runwitness.builders.base import BuilderConfigError, BuilderError
from runwitness.cli.logging_setup import setup_logging
from runwitness.config import WitnessConfig
from runwitness.core.delta import SnapshotMismatchError
from runwitness.core.provenance import VCSProbeError, probe_vcs_locator
from runwitness.core.snapshot_state import SnapshotStateError
from runwitness.core.watcher import WatchCancelledError, Watcher
from runwitness.models.attestation import Attestation, AttestationError
from runwitness.models.runs import InvalidRunTransitionError
from runwitness.stores.base import StoreConfigError, StoreIOError

# Status output goes to stderr; stdout carries documents.
console = Console(stderr=True)

WITNESS_ERRORS: tuple[type[Exception], ...] = (
    AttestationError,
    BuilderConfigError,
    BuilderError,
    InvalidRunTransitionError,
    SnapshotMismatchError,
    SnapshotStateError,
    StoreConfigError,
    StoreIOError,
    VCSProbeError,
    WatchCancelledError,
)


def load_config(log_level: str | None) -> WitnessConfig:
    """Load settings and configure logging; bad values end the command."""
    try:
        config = WitnessConfig()
        setup_logging(log_level or ("DEBUG" if config.debug else config.log_level))
    except ValueError as exc:
        raise fail("Invalid configuration", exc) from exc
    return config


def fail(message: str, exc: Exception) -> typer.Exit:
    console.print(f"[bold red]{message}:[/bold red] {escape(str(exc))}")
    return typer.Exit(code=1)


def build_watcher(
    spec_url: str, artifacts: list[str], config: WitnessConfig
) -> Watcher:
    watcher = Watcher.from_spec_url(spec_url, config=config)
    for uri in artifacts:
        watcher.add_artifact_source(uri)
    return watcher


def resolve_vcs_locator(vcs_url: str, repo_path: Path | None) -> str:
    """Use the explicit locator, else probe *repo_path* if given."""
    if vcs_url:
        return vcs_url
    if repo_path is None:
        return ""
    return probe_vcs_locator(repo_path)


def write_document(text: str, output: Path | None) -> None:
    """Write *text* to *output*, or to stdout when no path is given."""
    if output is None:
        typer.echo(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w", encoding="utf-8") as fh:
        fh.write(text)
        fh.write("\n")
    console.print(f"[green]Wrote[/green] {output}")


def print_subjects(att: Attestation) -> None:
    if not att.subject:
        console.print("[dim]No new artifacts discovered.[/dim]")
        return
    table = Table(title="Attested artifacts")
    table.add_column("Subject", style="cyan")
    table.add_column("Digest")
    for subject in att.subject:
        digest = ", ".join(f"{alg}:{value[:16]}" for alg, value in sorted(subject.digest.items()))
        table.add_row(subject.name, digest)
    console.print(table)
