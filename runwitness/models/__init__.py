"""runwitness data models — all Pydantic v2."""

from runwitness.models.artifacts import Artifact, Snapshot
from runwitness.models.attestation import (
    SLSA_PREDICATE_TYPE,
    STATEMENT_TYPE,
    Attestation,
    AttestationError,
    BuilderInfo,
    BuildMetadata,
    ConfigSource,
    Invocation,
    Material,
    SLSAPredicate,
    Subject,
)
from runwitness.models.messages import StartMessage
from runwitness.models.runs import (
    VALID_RUN_TRANSITIONS,
    InvalidRunTransitionError,
    Run,
    RunState,
)

__all__ = [
    # artifacts
    "Artifact",
    "Snapshot",
    # runs
    "Run",
    "RunState",
    "VALID_RUN_TRANSITIONS",
    "InvalidRunTransitionError",
    # attestation
    "Attestation",
    "AttestationError",
    "BuilderInfo",
    "BuildMetadata",
    "ConfigSource",
    "Invocation",
    "Material",
    "SLSAPredicate",
    "Subject",
    "STATEMENT_TYPE",
    "SLSA_PREDICATE_TYPE",
    # messages
    "StartMessage",
]
