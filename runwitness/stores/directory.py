"""Local filesystem store driver (``file://``)."""

from __future__ import annotations

import logging
import os
import stat
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import unquote, urlparse

from runwitness.core.hasher import hash_file
from runwitness.models.artifacts import Artifact, Snapshot
from runwitness.stores.base import StoreConfigError, StoreIOError

logger = logging.getLogger(__name__)


class DirectoryStore:
    """Snapshots every regular file below a local directory.

    Identities are POSIX paths relative to the root. Each file is hashed
    with sha256 and sha1; its modification time is recorded in UTC.

    Parameters
    ----------
    path:
        Root directory to walk.
    uri:
        Store URI used to label snapshots. Defaults to ``file://<path>``.
    """

    def __init__(self, path: Path | str, *, uri: str | None = None) -> None:
        if not str(path):
            raise StoreConfigError("Directory store has no path defined")
        self.path = Path(path)
        self.uri = uri or f"file://{self.path}"

    @classmethod
    def from_uri(cls, uri: str) -> DirectoryStore:
        parsed = urlparse(uri)
        if parsed.scheme != "file":
            raise StoreConfigError(f"Not a file:// URI: {uri!r}")
        # file://relative/dir parses "relative" as the host
        path = unquote(parsed.netloc + parsed.path)
        if not path:
            raise StoreConfigError(f"Directory store URI has no path: {uri!r}")
        return cls(path, uri=uri)

    def _walk(self) -> list[Path]:
        files: list[Path] = []

        def _raise(exc: OSError) -> None:
            raise exc

        for dirpath, dirnames, filenames in os.walk(self.path, onerror=_raise):
            dirnames.sort()
            for name in sorted(filenames):
                full = Path(dirpath) / name
                if stat.S_ISREG(full.lstat().st_mode):
                    files.append(full)
        return files

    def snap(self) -> Snapshot:
        """Hash every file under the root.

        Any unreadable file aborts the whole snapshot.
        """
        if not self.path.is_dir():
            raise StoreConfigError(f"Directory store root does not exist: {self.path}")

        try:
            files = self._walk()
        except OSError as exc:
            raise StoreIOError(f"Walking directory {self.path}: {exc}") from exc

        artifacts: list[Artifact] = []
        for full in files:
            rel = full.relative_to(self.path).as_posix()
            try:
                checksum = hash_file(full)
                mtime = full.stat().st_mtime
            except OSError as exc:
                raise StoreIOError(f"Reading {full}: {exc}") from exc
            artifacts.append(
                Artifact(
                    path=rel,
                    time=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    checksum=checksum,
                )
            )

        logger.debug("Snapshot of %s: %d file(s)", self.path, len(artifacts))
        return Snapshot.from_artifacts(self.uri, artifacts)
