"""Artifact and snapshot models (immutable once captured)."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any, NoReturn

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReadOnlyDict(dict):
    """A dict that refuses in-place changes.

    Frozen models only block attribute assignment; their dict fields would
    still be writable. Subclassing dict keeps pydantic serialization and
    equality with plain dicts working.
    """

    def _readonly(self, *args: Any, **kwargs: Any) -> NoReturn:
        raise TypeError(f"{type(self).__name__} does not support item assignment")

    __setitem__ = _readonly
    __delitem__ = _readonly
    __ior__ = _readonly
    clear = _readonly
    pop = _readonly
    popitem = _readonly
    setdefault = _readonly
    update = _readonly

    def __reduce__(self) -> tuple[Any, ...]:
        return (type(self), (dict(self),))


class Artifact(BaseModel):
    """One discovered file or object in an artifact store.

    ``path`` is the identity of the artifact inside its store: a relative
    path for directories, a ``gs://`` URI for buckets, a content-addressed
    reference for registry images. ``checksum`` maps an algorithm name to a
    hex digest; several algorithms may coexist.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    time: datetime | None = None
    checksum: dict[str, str] = Field(default_factory=dict, validate_default=True)

    @field_validator("checksum", mode="after")
    @classmethod
    def _freeze_checksum(cls, value: dict[str, str]) -> ReadOnlyDict:
        return ReadOnlyDict(value)


class Snapshot(BaseModel):
    """Point-in-time contents of one artifact store.

    Behaves as a read-only mapping of identity -> Artifact. A snapshot is
    never modified after capture; comparing two snapshots produces a new
    list and leaves both inputs untouched.
    """

    model_config = ConfigDict(frozen=True)

    store_uri: str
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    artifacts: dict[str, Artifact] = Field(default_factory=dict, validate_default=True)

    @field_validator("artifacts", mode="after")
    @classmethod
    def _freeze_artifacts(cls, value: dict[str, Artifact]) -> ReadOnlyDict:
        return ReadOnlyDict(value)

    def __len__(self) -> int:
        return len(self.artifacts)

    def __contains__(self, identity: object) -> bool:
        return identity in self.artifacts

    def __getitem__(self, identity: str) -> Artifact:
        return self.artifacts[identity]

    def identities(self) -> Iterator[str]:
        """Iterate over artifact identities in sorted order."""
        return iter(sorted(self.artifacts))

    def get(self, identity: str) -> Artifact | None:
        return self.artifacts.get(identity)

    def delta(self, post: Snapshot) -> list[Artifact]:
        """Return artifacts added or changed in *post* relative to this snapshot."""
        from runwitness.core.delta import compute_delta

        return compute_delta(self, post)

    @classmethod
    def from_artifacts(cls, store_uri: str, artifacts: list[Artifact]) -> Snapshot:
        """Build a snapshot keyed by each artifact's identity.

        Raises ``ValueError`` if two artifacts share an identity.
        """
        keyed: dict[str, Artifact] = {}
        for artifact in artifacts:
            if artifact.path in keyed:
                raise ValueError(
                    f"Duplicate artifact identity in snapshot of {store_uri}: {artifact.path}"
                )
            keyed[artifact.path] = artifact
        return cls(store_uri=store_uri, artifacts=keyed)
