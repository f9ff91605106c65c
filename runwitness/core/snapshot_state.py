"""Versioned persistence of pre-build storage snapshots.

The start phase writes this file; the finish phase, possibly in another
process and at another time, reads it back to diff against fresh snapshots.

Layout::

    {
      "version": 1,
      "snapshots": {
        "<store uri>": {
          "<identity>": {"time": "...", "checksum": {"sha256": "..."}}
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from runwitness.core.hasher import canonical_json_bytes
from runwitness.models.artifacts import Artifact, Snapshot

logger = logging.getLogger(__name__)

SNAPSHOT_STATE_VERSION = 1


class SnapshotStateError(RuntimeError):
    """Raised when persisted snapshot state cannot be read or written."""


class _EntryState(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: datetime | None = None
    checksum: dict[str, str] = Field(default_factory=dict)


class SnapshotState(BaseModel):
    """Serializable form of a set of snapshots, keyed by store URI."""

    model_config = ConfigDict(frozen=True)

    version: int = SNAPSHOT_STATE_VERSION
    snapshots: dict[str, dict[str, _EntryState]] = Field(default_factory=dict)

    @classmethod
    def from_snapshots(cls, snapshots: dict[str, Snapshot]) -> SnapshotState:
        return cls(
            snapshots={
                uri: {
                    identity: _EntryState(time=a.time, checksum=dict(a.checksum))
                    for identity, a in snap.artifacts.items()
                }
                for uri, snap in snapshots.items()
            }
        )

    def to_snapshots(self) -> dict[str, Snapshot]:
        return {
            uri: Snapshot(
                store_uri=uri,
                artifacts={
                    identity: Artifact(
                        path=identity, time=entry.time, checksum=entry.checksum
                    )
                    for identity, entry in entries.items()
                },
            )
            for uri, entries in self.snapshots.items()
        }

    def to_bytes(self) -> bytes:
        return canonical_json_bytes(self.model_dump(mode="json"))


def dump_snapshots(snapshots: dict[str, Snapshot]) -> bytes:
    """Serialize snapshots to canonical JSON bytes."""
    return SnapshotState.from_snapshots(snapshots).to_bytes()


def parse_snapshots(data: bytes | str) -> dict[str, Snapshot]:
    """Parse serialized snapshot state, rejecting unknown versions."""
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as exc:
        raise SnapshotStateError(f"Snapshot state is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise SnapshotStateError("Snapshot state must be a JSON object")
    version = raw.get("version")
    if version != SNAPSHOT_STATE_VERSION:
        raise SnapshotStateError(
            f"Unsupported snapshot state version {version!r} "
            f"(expected {SNAPSHOT_STATE_VERSION})"
        )

    try:
        state = SnapshotState.model_validate(raw)
    except ValidationError as exc:
        raise SnapshotStateError(f"Malformed snapshot state: {exc}") from exc
    return state.to_snapshots()


def save_snapshots(snapshots: dict[str, Snapshot], path: Path) -> None:
    """Write snapshot state to *path*, creating parent directories."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(dump_snapshots(snapshots))
    except OSError as exc:
        raise SnapshotStateError(f"Writing snapshot state to {path}: {exc}") from exc
    logger.info("Saved %d storage snapshot(s) to %s", len(snapshots), path)


def load_snapshots(path: Path) -> dict[str, Snapshot]:
    """Read snapshot state written by :func:`save_snapshots`."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise SnapshotStateError(f"Reading snapshot state from {path}: {exc}") from exc
    snapshots = parse_snapshots(data)
    logger.info("Loaded %d storage snapshot(s) from %s", len(snapshots), path)
    return snapshots
