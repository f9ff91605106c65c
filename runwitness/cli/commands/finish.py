"""``runwitness finish SPEC_URL --partial FILE`` — complete a partial attestation."""

from __future__ import annotations

from pathlib import Path

import typer

from runwitness.cli.commands._common import (
    WITNESS_ERRORS,
    build_watcher,
    console,
    fail,
    load_config,
    print_subjects,
    write_document,
)
from runwitness.models.attestation import Attestation


def finish_cmd(
    spec_url: str = typer.Argument(..., help="URL of the build run to attest."),
    partial: Path = typer.Option(
        ..., "--partial", "-p", help="Partial attestation written by 'start'."
    ),
    artifacts: list[str] = typer.Option(
        [],
        "--artifacts",
        "-a",
        help="Artifact locations (default: those recorded in the storage state).",
    ),
    state: Path | None = typer.Option(
        None, "--state", help="Storage snapshots saved by 'start' (default: next to --partial)."
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write the attestation here instead of stdout."
    ),
    watch: bool = typer.Option(
        True, "--watch/--no-watch", help="Wait for the run to finish before attesting."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
) -> None:
    """Diff artifact locations against the saved state and finish the attestation."""
    config = load_config(log_level)
    try:
        att = Attestation.from_json(partial.read_text(encoding="utf-8"))
    except OSError as exc:
        raise fail("Reading partial attestation failed", exc)
    except WITNESS_ERRORS as exc:
        raise fail("Reading partial attestation failed", exc)

    state_path = state or config.snapshot_state_path(partial)
    try:
        watcher = build_watcher(spec_url, [], config)
        if state_path is not None and state_path.exists():
            watcher.load_snapshots(state_path)
        elif artifacts:
            console.print(
                f"[yellow]No storage state at {state_path}; every artifact will be reported[/yellow]"
            )
        for uri in artifacts or list(watcher.snapshots):
            watcher.add_artifact_source(uri)

        run = watcher.get_run()
        if watch:
            console.print(f"[bold cyan]Watching[/bold cyan] {spec_url}")
            watcher.watch(run)
        final = watcher.finish_attestation(run, att)
    except WITNESS_ERRORS as exc:
        raise fail("Finishing attestation failed", exc)

    print_subjects(final)
    write_document(final.to_json(indent=2), output)
