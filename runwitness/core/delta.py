"""Directional snapshot delta: what a build added or changed in a store.

Deletions are deliberately not reported; provenance only declares outputs.
"""

from __future__ import annotations

from runwitness.models.artifacts import Artifact, Snapshot


class SnapshotMismatchError(ValueError):
    """Raised when two snapshots of different stores are compared."""


def artifact_changed(before: Artifact, after: Artifact) -> bool:
    """Decide whether *after* is a new build output compared to *before*.

    The recorded time wins over content: a retouched file with identical
    bytes is still reported. Checksums are compared only for algorithms
    present on both sides.
    """
    if before.time != after.time:
        return True
    for algorithm, value in before.checksum.items():
        other = after.checksum.get(algorithm)
        if other is not None and other != value:
            return True
    return False


def compute_delta(pre: Snapshot, post: Snapshot) -> list[Artifact]:
    """Return artifacts in *post* that are new or changed since *pre*.

    The result is sorted by identity. Neither snapshot is modified.
    """
    if pre.store_uri != post.store_uri:
        raise SnapshotMismatchError(
            f"Cannot diff snapshots of different stores: "
            f"{pre.store_uri!r} vs {post.store_uri!r}"
        )

    results: list[Artifact] = []
    for identity in post.identities():
        after = post[identity]
        before = pre.get(identity)
        if before is None or artifact_changed(before, after):
            results.append(after)
    return results
