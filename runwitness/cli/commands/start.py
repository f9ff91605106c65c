"""``runwitness start SPEC_URL`` — write a partial attestation.

Records what can be observed before the build runs: the source material and
the state of every artifact location. The storage snapshots are saved next
to the attestation (``<output>.storage-snap.json`` by default) so that
``runwitness finish`` can later notice which artifacts are new.
"""

from __future__ import annotations

from pathlib import Path

import typer

from runwitness.cli.commands._common import (
    WITNESS_ERRORS,
    build_watcher,
    fail,
    load_config,
    resolve_vcs_locator,
    write_document,
)


def start_cmd(
    spec_url: str = typer.Argument(..., help="URL of the build run to attest."),
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
        None, "--output", "-o", help="Write the partial attestation here."
    ),
    state: Path | None = typer.Option(
        None, "--state", help="Where to save storage snapshots (default: next to output)."
    ),
    message: Path | None = typer.Option(
        None, "--message", help="Also write the pub/sub start message to this file."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
) -> None:
    """Snapshot artifact locations and write a partial attestation."""
    config = load_config(log_level)
    try:
        watcher = build_watcher(spec_url, artifacts, config)
        locator = resolve_vcs_locator(vcs_url, repo_path)
        state_path = state or config.snapshot_state_path(output)
        att = watcher.start_attestation(locator, state_path=state_path)

        document = att.to_json(indent=2)
        start_message = None
        if message is not None:
            start_message = watcher.start_message(
                att, include_snapshots=state_path is not None
            )
    except WITNESS_ERRORS as exc:
        raise fail("Starting attestation failed", exc)

    write_document(document, output)
    if start_message is not None:
        write_document(start_message.model_dump_json(indent=2), message)
