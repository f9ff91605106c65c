"""GitHub Actions builder.

Accepted run spec URLs::

    github://OWNER/REPO/RUN_ID
    https://github.com/OWNER/REPO/actions/runs/RUN_ID[/attempts/N]
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from runwitness.builders.base import (
    BaseBuilder,
    BuilderConfigError,
    RunRefreshError,
)
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

BUILDER_ID = "https://github.com/Attestations/GitHubHostedActions@v1"
BUILD_TYPE = "https://github.com/Attestations/GitHubActionsWorkflow@v1"

_SHORT_URL = re.compile(r"^github://(?P<owner>[^/]+)/(?P<repo>[^/]+)/(?P<run_id>\d+)/?$")
_WEB_URL = re.compile(
    r"^https://github\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+)/actions/runs/(?P<run_id>\d+)"
    r"(?:/attempts/(?P<attempt>\d+))?(?:/.*)?$"
)


def parse_spec_url(spec_url: str) -> dict[str, str]:
    """Split a GitHub run URL into owner, repo, run_id and attempt."""
    match = _SHORT_URL.match(spec_url) or _WEB_URL.match(spec_url)
    if match is None:
        raise BuilderConfigError(f"Not a GitHub Actions run URL: {spec_url!r}")
    parts = match.groupdict()
    return {
        "owner": parts["owner"],
        "repo": parts["repo"],
        "run_id": parts["run_id"],
        "attempt": parts.get("attempt") or "",
    }


def _state_for(status: str) -> RunState:
    if status == "completed":
        return RunState.TERMINATED
    if status == "in_progress":
        return RunState.RUNNING
    return RunState.PENDING


class GitHubActionsBuilder(BaseBuilder):
    """Watches a GitHub Actions workflow run through the REST API.

    Parameters
    ----------
    api_url:
        Base URL of the GitHub API.
    token:
        Token sent as a bearer credential. Public repositories work without
        one, subject to rate limits.
    client:
        An ``httpx.Client``; created on first use when omitted.
    """

    name = "github-actions"

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str = "",
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._token = token
        self._client = client
        self._timeout = timeout

    @classmethod
    def matches(cls, spec_url: str) -> bool:
        return bool(_SHORT_URL.match(spec_url) or _WEB_URL.match(spec_url))

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def get_run(self, spec_url: str) -> Run:
        parts = parse_spec_url(spec_url)
        run = Run(
            spec_url=spec_url,
            run_id=parts["run_id"],
            system_data={"owner": parts["owner"], "repo": parts["repo"], "attempt": parts["attempt"]},
        )
        self.refresh_run(run)
        return run

    def _fetch(self, run: Run) -> dict[str, Any]:
        data = run.system_data
        path = f"/repos/{data['owner']}/{data['repo']}/actions/runs/{run.run_id}"
        if data.get("attempt"):
            path += f"/attempts/{data['attempt']}"
        try:
            response = self.client.get(self.api_url + path, headers=self._headers())
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RunRefreshError(
                f"Fetching GitHub run {data['owner']}/{data['repo']}#{run.run_id}: {exc}"
            ) from exc

    def refresh_run(self, run: Run) -> None:
        payload = self._fetch(run)
        status = payload.get("status", "")
        observed = _state_for(status)
        logger.info("GitHub run %s status=%s conclusion=%s",
                    run.run_id, status, payload.get("conclusion"))

        fields: dict[str, Any] = {
            "status": status,
            "is_success": payload.get("conclusion") == "success",
            "started_at": payload.get("run_started_at") or payload.get("created_at"),
            "system_data": {**run.system_data, "payload": payload},
        }
        if observed == RunState.TERMINATED:
            fields["ended_at"] = payload.get("updated_at")
        self._apply_observation(run, observed, **fields)

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------

    def build_predicate(self, run: Run) -> SLSAPredicate:
        data = run.system_data
        payload: dict[str, Any] = data.get("payload", {})
        head_sha = payload.get("head_sha", "")
        repo_uri = f"git+https://github.com/{data.get('owner')}/{data.get('repo')}"
        if payload.get("head_branch"):
            repo_uri += f"@refs/heads/{payload['head_branch']}"
        attempt = payload.get("run_attempt") or data.get("attempt") or 1

        source = ConfigSource(
            uri=repo_uri,
            digest={"sha1": head_sha} if head_sha else {},
            entry_point=payload.get("path", ""),
        )
        return SLSAPredicate(
            builder=BuilderInfo(id=BUILDER_ID),
            build_type=BUILD_TYPE,
            invocation=Invocation(
                config_source=source,
                parameters={"event": payload.get("event", "")},
                environment={
                    "github_run_id": run.run_id,
                    "github_run_attempt": str(attempt),
                    "github_event_name": payload.get("event", ""),
                    "github_actor": (payload.get("actor") or {}).get("login", ""),
                    "github_workflow_id": str(payload.get("workflow_id", "")),
                },
            ),
            metadata=BuildMetadata(
                build_invocation_id=f"{run.run_id}-{attempt}",
                build_started_on=run.started_at,
                build_finished_on=run.ended_at,
            ),
            materials=[Material(uri=source.uri, digest=source.digest)],
        )
