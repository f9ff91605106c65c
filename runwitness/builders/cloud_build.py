"""Google Cloud Build builder.

Accepted run spec URLs::

    gcb://PROJECT/BUILD_ID
    https://console.cloud.google.com/cloud-build/builds/BUILD_ID?project=PROJECT
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import parse_qs, urlparse

import requests

from runwitness.builders.base import (
    BaseBuilder,
    BuilderConfigError,
    RunRefreshError,
)
from runwitness.core.hasher import split_digest
from runwitness.models.attestation import (
    BuilderInfo,
    BuildMetadata,
    ConfigSource,
    Invocation,
    Material,
    SLSAPredicate,
)
from runwitness.models.runs import Run, RunState

logger = logging.getLogger(__name__)

BUILDER_ID = "https://cloudbuild.googleapis.com/GoogleHostedWorker"
BUILD_TYPE = "https://cloudbuild.googleapis.com/CloudBuildYaml@v1"

_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

_PENDING_STATUSES = frozenset({"PENDING", "QUEUED", "STATUS_UNKNOWN"})
_RUNNING_STATUSES = frozenset({"WORKING"})

_SHORT_URL = re.compile(r"^gcb://(?P<project>[^/]+)/(?P<build_id>[^/?#]+)/?$")
_CONSOLE_PATH = re.compile(r"^/cloud-build/builds(?:;region=[^/]+)?/(?P<build_id>[^/]+)/?$")
_COMMIT = re.compile(r"^[0-9a-f]{40}$")


def parse_spec_url(spec_url: str) -> tuple[str, str]:
    """Return ``(project, build_id)`` for a Cloud Build run URL."""
    match = _SHORT_URL.match(spec_url)
    if match:
        return match["project"], match["build_id"]

    parsed = urlparse(spec_url)
    if parsed.scheme == "https" and parsed.netloc == "console.cloud.google.com":
        path_match = _CONSOLE_PATH.match(parsed.path)
        project = parse_qs(parsed.query).get("project", [""])[0]
        if path_match and project:
            return project, path_match["build_id"]

    raise BuilderConfigError(f"Not a Cloud Build run URL: {spec_url!r}")


def _state_for(status: str) -> RunState:
    if status in _PENDING_STATUSES:
        return RunState.PENDING
    if status in _RUNNING_STATUSES:
        return RunState.RUNNING
    return RunState.TERMINATED


class CloudBuildBuilder(BaseBuilder):
    """Watches a Cloud Build build through the REST API.

    Parameters
    ----------
    api_url:
        Base URL of the Cloud Build v1 API.
    session:
        A ``google.auth.transport.requests.AuthorizedSession`` (or anything
        with the same ``get`` signature). Built from application default
        credentials on first use when omitted.
    """

    name = "cloud-build"

    def __init__(
        self,
        api_url: str = "https://cloudbuild.googleapis.com/v1",
        *,
        session: Any | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._session = session
        self._timeout = timeout

    @classmethod
    def matches(cls, spec_url: str) -> bool:
        try:
            parse_spec_url(spec_url)
        except BuilderConfigError:
            return False
        return True

    @property
    def session(self) -> Any:
        if self._session is None:
            from google.auth import default
            from google.auth.transport.requests import AuthorizedSession

            credentials, _ = default(scopes=_SCOPES)
            self._session = AuthorizedSession(credentials)
        return self._session

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def get_run(self, spec_url: str) -> Run:
        project, build_id = parse_spec_url(spec_url)
        run = Run(spec_url=spec_url, run_id=build_id, system_data={"project": project})
        self.refresh_run(run)
        return run

    def _fetch(self, run: Run) -> dict[str, Any]:
        project = run.system_data["project"]
        url = f"{self.api_url}/projects/{project}/builds/{run.run_id}"
        try:
            response = self.session.get(url, timeout=self._timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise RunRefreshError(
                f"Fetching Cloud Build {project}/{run.run_id}: {exc}"
            ) from exc

    def refresh_run(self, run: Run) -> None:
        payload = self._fetch(run)
        status = payload.get("status", "")
        observed = _state_for(status)
        logger.info("Cloud Build %s status=%s", run.run_id, status)

        fields: dict[str, Any] = {
            "status": status,
            "is_success": status == "SUCCESS",
            "started_at": payload.get("startTime") or payload.get("createTime"),
            "system_data": {**run.system_data, "payload": payload},
        }
        if observed == RunState.TERMINATED:
            fields["ended_at"] = payload.get("finishTime")
        self._apply_observation(run, observed, **fields)

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------

    @staticmethod
    def _config_source(payload: dict[str, Any]) -> ConfigSource:
        provenance = payload.get("sourceProvenance") or {}
        repo = provenance.get("resolvedRepoSource")
        if repo:
            commit = repo.get("commitSha", "")
            return ConfigSource(
                uri=f"https://source.developers.google.com/p/{repo.get('projectId')}/r/{repo.get('repoName')}",
                digest={"sha1": commit} if commit else {},
            )
        storage = provenance.get("resolvedStorageSource")
        if storage:
            return ConfigSource(
                uri=f"gs://{storage.get('bucket')}/{storage.get('object')}#{storage.get('generation', '')}",
            )
        git = (payload.get("source") or {}).get("gitSource")
        if git:
            revision = git.get("revision", "")
            return ConfigSource(
                uri=f"git+{git.get('url', '')}",
                digest={"sha1": revision} if _COMMIT.match(revision) else {},
            )
        return ConfigSource()

    @staticmethod
    def _step_materials(payload: dict[str, Any]) -> list[Material]:
        steps = payload.get("steps", [])
        images = (payload.get("results") or {}).get("buildStepImages", [])
        materials: list[Material] = []
        for index, step in enumerate(steps):
            digest: dict[str, str] = {}
            if index < len(images) and images[index]:
                try:
                    algorithm, value = split_digest(images[index])
                    digest = {algorithm: value}
                except ValueError:
                    logger.warning("Ignoring malformed step image digest %r", images[index])
            materials.append(Material(uri=step.get("name", ""), digest=digest))
        return materials

    def build_predicate(self, run: Run) -> SLSAPredicate:
        payload: dict[str, Any] = run.system_data.get("payload", {})
        source = self._config_source(payload)
        steps = [
            {k: step[k] for k in ("name", "args", "entrypoint", "dir", "env") if k in step}
            for step in payload.get("steps", [])
        ]

        materials = [Material(uri=source.uri, digest=source.digest)] if source.uri else []
        materials.extend(self._step_materials(payload))

        return SLSAPredicate(
            builder=BuilderInfo(id=BUILDER_ID),
            build_type=BUILD_TYPE,
            invocation=Invocation(
                config_source=source,
                parameters={
                    "steps": steps,
                    "substitutions": payload.get("substitutions", {}),
                },
                environment={
                    "project_id": run.system_data.get("project", ""),
                    "build_id": run.run_id,
                    "log_url": payload.get("logUrl", ""),
                },
            ),
            metadata=BuildMetadata(
                build_invocation_id=run.run_id,
                build_started_on=run.started_at,
                build_finished_on=run.ended_at,
                completeness={"parameters": True},
            ),
            materials=materials,
        )
