"""Canonical hashing helpers for file checksums and JSON documents."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

# Algorithms recorded for every file a directory snapshot sees.
FILE_ALGORITHMS: tuple[str, ...] = ("sha256", "sha1")

_CHUNK_SIZE = 1024 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_file(
    path: Path, algorithms: tuple[str, ...] = FILE_ALGORITHMS
) -> dict[str, str]:
    """Hash a file with every algorithm in *algorithms* in one read pass.

    Returns ``{algorithm: hexdigest}``. ``OSError`` propagates to the caller.
    """
    hashers = {name: hashlib.new(name) for name in algorithms}
    with open(path, "rb") as fh:
        while chunk := fh.read(_CHUNK_SIZE):
            for h in hashers.values():
                h.update(chunk)
    return {name: h.hexdigest() for name, h in hashers.items()}


def split_digest(value: str) -> tuple[str, str]:
    """Split an ``"<alg>:<hex>"`` content digest into its two parts.

    Raises ``ValueError`` when there is no algorithm prefix.
    """
    algorithm, sep, hex_digest = value.partition(":")
    if not sep or not algorithm or not hex_digest:
        raise ValueError(f"Not a content digest: {value!r}")
    return algorithm, hex_digest
