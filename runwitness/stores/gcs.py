"""Google Cloud Storage store driver (``gs://``).

A bucket prefix is mirrored into a private temporary directory and then
hashed with :class:`~runwitness.stores.directory.DirectoryStore`; the
resulting identities are rewritten back to ``gs://bucket/object`` form.

Listing walks "directories" with an explicit worklist of prefixes and a
visited set, so cyclic or repeated delimiter listings cannot loop.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from runwitness.models.artifacts import Artifact, Snapshot
from runwitness.stores.base import StoreConfigError, StoreIOError
from runwitness.stores.directory import DirectoryStore

logger = logging.getLogger(__name__)

DELIMITER = "/"


def _normalize_prefix(prefix: str) -> str:
    prefix = prefix.lstrip(DELIMITER)
    if prefix and not prefix.endswith(DELIMITER):
        prefix += DELIMITER
    return prefix


def _is_directory_marker(blob: Any) -> bool:
    # Any name ending in the delimiter is a folder marker, even with a body;
    # such names cannot be mirrored as files.
    return blob.name.endswith(DELIMITER)


def _is_placeholder(blob: Any) -> bool:
    # Some tools mark folders with an empty text/plain object that has no
    # trailing slash. Genuine empty text artifacts are skipped too; this is
    # a known false negative of the heuristic.
    content_type = (blob.content_type or "").split(";")[0].strip()
    return not blob.size and content_type == "text/plain"


class GCSStore:
    """Snapshots the objects below a bucket prefix.

    Parameters
    ----------
    bucket:
        Bucket name.
    path:
        Object prefix to mirror.
    client:
        A ``google.cloud.storage.Client``. Created lazily when omitted.
    workers:
        Size of the download pool.
    """

    def __init__(
        self,
        bucket: str,
        path: str,
        *,
        client: Any | None = None,
        workers: int = 4,
        uri: str | None = None,
    ) -> None:
        if not bucket:
            raise StoreConfigError("gcs store has no bucket defined")
        if not path or path == DELIMITER:
            raise StoreConfigError("gcs store has no path defined")
        self.bucket = bucket
        self.path = path
        self.workers = max(1, workers)
        self.uri = uri or f"gs://{bucket}/{path.lstrip(DELIMITER)}"
        self._client = client
        logger.info("GCS driver init: bucket=%s path=%s", bucket, path)

    @classmethod
    def from_uri(cls, uri: str, **kwargs: Any) -> GCSStore:
        parsed = urlparse(uri)
        if parsed.scheme != "gs":
            raise StoreConfigError(f"Not a gs:// URI: {uri!r}")
        return cls(parsed.netloc, parsed.path, uri=uri, **kwargs)

    @property
    def client(self) -> Any:
        if self._client is None:
            from google.cloud import storage

            self._client = storage.Client()
        return self._client

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_objects(self) -> dict[str, datetime | None]:
        """Return the objects under the store prefix that should be mirrored.

        Maps object name to its last update time as reported by the listing.
        """
        start = _normalize_prefix(self.path)
        queue: deque[str] = deque([start])
        visited: set[str] = set()
        objects: dict[str, datetime | None] = {}

        while queue:
            prefix = queue.popleft()
            if prefix in visited:
                continue
            visited.add(prefix)
            logger.info("Listing prefix gs://%s/%s", self.bucket, prefix)

            try:
                iterator = self.client.list_blobs(
                    self.bucket, prefix=prefix, delimiter=DELIMITER
                )
                for page in iterator.pages:
                    for blob in page:
                        if _is_directory_marker(blob):
                            if blob.size:
                                logger.debug("Treating non-empty %s as a directory marker", blob.name)
                            queue.append(_normalize_prefix(blob.name))
                            continue
                        if _is_placeholder(blob):
                            logger.debug("Skipping placeholder object %s", blob.name)
                            continue
                        objects[blob.name] = getattr(blob, "updated", None)
                    for sub_prefix in sorted(page.prefixes):
                        queue.append(_normalize_prefix(sub_prefix))
            except Exception as exc:
                raise StoreIOError(
                    f"Listing gs://{self.bucket}/{prefix}: {exc}"
                ) from exc

        return dict(sorted(objects.items()))

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def _download(self, name: str, updated: datetime | None, workdir: Path) -> None:
        local = (workdir / name).resolve()
        if workdir.resolve() not in local.parents:
            raise StoreIOError(
                f"Object gs://{self.bucket}/{name} escapes the work directory"
            )
        logger.debug("Copying gs://%s/%s", self.bucket, name)
        try:
            local.parent.mkdir(parents=True, exist_ok=True)
            blob = self.client.bucket(self.bucket).blob(name)
            with open(local, "wb") as fh:
                blob.download_to_file(fh)
            # Carry the object's update time so re-syncs compare equal.
            if updated is not None:
                ts = updated.timestamp()
                os.utime(local, (ts, ts))
        except Exception as exc:
            raise StoreIOError(
                f"Downloading gs://{self.bucket}/{name}: {exc}"
            ) from exc

    def sync(self, workdir: Path) -> list[str]:
        """Mirror the prefix into *workdir*; returns the object names copied.

        Every download finishes, successfully or not, before this returns.
        The first failure is re-raised.
        """
        objects = self.list_objects()
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [
                pool.submit(self._download, name, updated, workdir)
                for name, updated in objects.items()
            ]
        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]
        return list(objects)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snap(self) -> Snapshot:
        with tempfile.TemporaryDirectory(prefix="runwitness-gcs-") as tmp:
            workdir = Path(tmp)
            names = self.sync(workdir)
            local = DirectoryStore(workdir).snap()

        artifacts = [
            Artifact(
                path=f"gs://{self.bucket}/{rel}",
                time=artifact.time,
                checksum=dict(artifact.checksum),
            )
            for rel, artifact in local.artifacts.items()
        ]
        logger.info(
            "Snapshot of %s: %d object(s) synced, %d artifact(s)",
            self.uri,
            len(names),
            len(artifacts),
        )
        return Snapshot.from_artifacts(self.uri, artifacts)
