"""``runwitness attest SPEC_URL`` — watch a run and attest to it in one go.

Snapshots the artifact sources, waits for the run to finish, snapshots
again and prints the complete attestation.
"""

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
    resolve_vcs_locator,
    write_document,
)
from runwitness.core.provenance import parse_vcs_locator


def attest_cmd(
    spec_url: str = typer.Argument(..., help="URL of the build run to watch."),
    artifacts: list[str] = typer.Option(
        [],
        "--artifacts",
        "-a",
        help="Artifact storage location (file://, gs://, oci://). Repeatable.",
    ),
    vcs_url: str = typer.Option(
        "", "--vcs-url", help="VCS locator (repo-url@commit) to record as material."
    ),
    repo_path: Path | None = typer.Option(
        None, "--repo-path", help="Local checkout to probe for the VCS locator."
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write the attestation here instead of stdout."
    ),
    watch: bool = typer.Option(
        True, "--watch/--no-watch", help="Wait for the run to finish before attesting."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
) -> None:
    """Watch a build run and emit its provenance attestation."""
    config = load_config(log_level)
    try:
        watcher = build_watcher(spec_url, artifacts, config)
        watcher.snap()
        run = watcher.get_run()
        if watch:
            console.print(f"[bold cyan]Watching[/bold cyan] {spec_url}")
            watcher.watch(run)

        locator = resolve_vcs_locator(vcs_url, repo_path)
        materials = [parse_vcs_locator(locator)] if locator else []
        att = watcher.attest_run(run, materials=materials)
    except WITNESS_ERRORS as exc:
        raise fail("Attestation failed", exc)

    print_subjects(att)
    write_document(att.to_json(indent=2), output)
