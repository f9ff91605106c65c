"""in-toto statement and SLSA v0.2 provenance predicate models.

The wire format follows https://slsa.dev/provenance/v0.2: field names are
camelCase on the wire and snake_case in Python. Serialization is canonical
(sorted keys) so that the same attestation always produces the same bytes.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

STATEMENT_TYPE = "https://in-toto.io/Statement/v0.1"
SLSA_PREDICATE_TYPE = "https://slsa.dev/provenance/v0.2"


class AttestationError(RuntimeError):
    """Raised when an attestation cannot be serialized or parsed."""


class _SLSAModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Material(_SLSAModel):
    """A build input, e.g. the source repository at a commit."""

    uri: str
    digest: dict[str, str] = Field(default_factory=dict)


class Subject(_SLSAModel):
    """A build output with its digests."""

    name: str
    digest: dict[str, str] = Field(default_factory=dict)


class BuilderInfo(_SLSAModel):
    id: str = ""


class ConfigSource(_SLSAModel):
    uri: str = ""
    digest: dict[str, str] = Field(default_factory=dict)
    entry_point: str = ""


class Invocation(_SLSAModel):
    config_source: ConfigSource = Field(default_factory=ConfigSource)
    parameters: dict[str, Any] = Field(default_factory=dict)
    environment: dict[str, Any] = Field(default_factory=dict)


class Completeness(_SLSAModel):
    parameters: bool = False
    environment: bool = False
    materials: bool = False


class BuildMetadata(_SLSAModel):
    build_invocation_id: str = ""
    build_started_on: datetime | None = None
    build_finished_on: datetime | None = None
    completeness: Completeness = Field(default_factory=Completeness)
    reproducible: bool = False


class SLSAPredicate(_SLSAModel):
    """SLSA provenance predicate.

    Builders fill in ``builder``, ``build_type``, ``invocation`` and
    ``metadata``; the watcher adds ``materials``.
    """

    builder: BuilderInfo = Field(default_factory=BuilderInfo)
    build_type: str = ""
    invocation: Invocation = Field(default_factory=Invocation)
    build_config: dict[str, Any] | None = None
    metadata: BuildMetadata = Field(default_factory=BuildMetadata)
    materials: list[Material] = Field(default_factory=list)


class Attestation(_SLSAModel):
    """An in-toto statement wrapping exactly one provenance predicate.

    A *partial* attestation carries materials but no subjects; it is
    completed once the build has finished and the artifact stores have been
    diffed.
    """

    statement_type: str = Field(default=STATEMENT_TYPE, alias="_type")
    predicate_type: str = ""
    subject: list[Subject] = Field(default_factory=list)
    predicate: SLSAPredicate | None = None

    @classmethod
    def new(cls) -> Attestation:
        """Create an empty statement with no predicate selected."""
        return cls()

    def slsa(self) -> Attestation:
        """Select the SLSA provenance predicate variant."""
        self.predicate_type = SLSA_PREDICATE_TYPE
        if self.predicate is None:
            self.predicate = SLSAPredicate()
        return self

    @property
    def is_partial(self) -> bool:
        return not self.subject

    def to_dict(self) -> dict[str, Any]:
        if self.predicate is None:
            raise AttestationError("Attestation has no predicate; call slsa() first")
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self, *, indent: int | None = None) -> str:
        """Serialize to canonical JSON (sorted keys)."""
        separators = (",", ":") if indent is None else (",", ": ")
        return json.dumps(
            self.to_dict(), sort_keys=True, indent=indent, separators=separators
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> Attestation:
        try:
            att = cls.model_validate_json(data)
        except ValidationError as exc:
            raise AttestationError(f"Malformed attestation document: {exc}") from exc
        if att.predicate is None:
            raise AttestationError("Attestation document has no predicate")
        return att
