"""Helpers that assemble materials, subjects and start messages."""

from __future__ import annotations

import base64
import logging
import shutil
import subprocess
from pathlib import Path

from runwitness.core.hasher import split_digest
from runwitness.models.artifacts import Artifact
from runwitness.models.attestation import Material, Subject
from runwitness.models.messages import StartMessage

logger = logging.getLogger(__name__)


class VCSProbeError(RuntimeError):
    """Raised when git is present but reading a checkout fails."""


def parse_vcs_locator(locator: str) -> Material:
    """Turn ``repo-url[@commit]`` into a material.

    The part after the last ``@`` becomes a ``sha1`` digest. An ``@`` that
    belongs to credentials or an scp-style host (``git@github.com:...``)
    is not a commit separator.
    """
    repo, sep, commit = locator.rpartition("@")
    if not sep or not repo or "/" in commit or ":" in commit:
        return Material(uri=locator, digest={})
    return Material(uri=repo, digest={"sha1": commit})


def _git(repo_path: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", str(repo_path), *args],
        capture_output=True,
        text=True,
        timeout=30,
    )
    if result.returncode != 0:
        raise VCSProbeError(
            f"git {' '.join(args)} failed in {repo_path}: {result.stderr.strip()}"
        )
    return result.stdout.strip()


def probe_vcs_locator(repo_path: Path) -> str:
    """Read ``origin-url@HEAD`` from a local git checkout.

    Returns ``""`` when *repo_path* is not a git checkout or git is not
    installed.
    """
    repo_path = Path(repo_path).resolve()
    if shutil.which("git") is None:
        logger.warning("git not found on PATH; cannot probe %s", repo_path)
        return ""
    if not (repo_path / ".git").exists():
        logger.info("%s is not a git checkout; no VCS material", repo_path)
        return ""

    try:
        url = _git(repo_path, "remote", "get-url", "origin")
        commit = _git(repo_path, "rev-parse", "HEAD")
    except (subprocess.SubprocessError, OSError) as exc:
        raise VCSProbeError(f"Probing VCS in {repo_path}: {exc}") from exc
    return f"{url}@{commit}" if commit else url


def merge_materials(*groups: list[Material]) -> list[Material]:
    """Concatenate material lists, dropping exact duplicates, keeping order."""
    merged: list[Material] = []
    seen: set[tuple[str, tuple[tuple[str, str], ...]]] = set()
    for group in groups:
        for material in group:
            key = (material.uri, tuple(sorted(material.digest.items())))
            if key in seen:
                continue
            seen.add(key)
            merged.append(material)
    return merged


def subject_digest(checksum: dict[str, str]) -> dict[str, str]:
    """Convert artifact checksums to an in-toto digest set.

    Registry descriptors record ``{"digest": "sha256:<hex>"}``; those are
    split into ``{"sha256": "<hex>"}``.
    """
    digest: dict[str, str] = {}
    for algorithm, value in checksum.items():
        if algorithm == "digest":
            alg, hex_value = split_digest(value)
            digest[alg] = hex_value
        else:
            digest[algorithm] = value
    return digest


def subjects_from_artifacts(artifacts: list[Artifact]) -> list[Subject]:
    """One subject per artifact, sorted by name."""
    return [
        Subject(name=a.path, digest=subject_digest(a.checksum))
        for a in sorted(artifacts, key=lambda a: a.path)
    ]


def build_start_message(
    spec_url: str,
    attestation_json: str | bytes,
    artifact_sources: list[str],
    snapshot_data: bytes | None = None,
) -> StartMessage:
    """Build the pub/sub payload announcing a started attestation."""
    if isinstance(attestation_json, str):
        attestation_json = attestation_json.encode("utf-8")
    return StartMessage(
        spec_url=spec_url,
        attestation=base64.b64encode(attestation_json).decode("ascii"),
        snapshots=base64.b64encode(snapshot_data).decode("ascii") if snapshot_data else "",
        artifacts=list(artifact_sources),
        artifact_list=",".join(artifact_sources),
    )
