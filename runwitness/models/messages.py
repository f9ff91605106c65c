"""Pub/sub payload announcing a started attestation."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StartMessage(BaseModel):
    """Message published when a partial attestation has been written.

    ``attestation`` and ``snapshots`` are base64-encoded documents so the
    payload can travel through any string-only transport. A consumer uses
    them to resume the watch and finish the attestation elsewhere.
    """

    model_config = ConfigDict(frozen=True)

    spec_url: str
    attestation: str
    snapshots: str = ""
    artifacts: list[str] = Field(default_factory=list)
    artifact_list: str = ""
