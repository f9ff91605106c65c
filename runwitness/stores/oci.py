"""OCI registry image store driver (``oci://``).

An image is snapshotted as the set of content-addressed descriptors that
compose it: the manifest, its config blob and every layer. Multi-platform
indexes are expanded into each child manifest and its descendants. Only
manifests are fetched; blobs are identified by the digests the manifests
declare.

Talks to the registry through the distribution v2 HTTP API with httpx,
negotiating an anonymous bearer token when the registry asks for one.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlparse

import httpx

from runwitness.core.hasher import sha256_hex
from runwitness.models.artifacts import Artifact, Snapshot
from runwitness.stores.base import StoreConfigError, StoreIOError

logger = logging.getLogger(__name__)

INDEX_MEDIA_TYPES = frozenset({
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
})
MANIFEST_MEDIA_TYPES = frozenset({
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
})
ACCEPT_HEADER = ", ".join(sorted(INDEX_MEDIA_TYPES | MANIFEST_MEDIA_TYPES))

DEFAULT_TAG = "latest"

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')

# Registries that publish their API under a different host.
_API_HOSTS = {"docker.io": "registry-1.docker.io"}


def parse_auth_challenge(header: str) -> dict[str, str]:
    """Parse a ``WWW-Authenticate: Bearer k="v",...`` header into a dict."""
    scheme, _, params = header.partition(" ")
    if scheme.lower() != "bearer":
        return {}
    return dict(_CHALLENGE_PARAM.findall(params))


class OCIStore:
    """Snapshots the descriptors of one registry image.

    Parameters
    ----------
    reference:
        ``oci://registry/repository/image[:tag|@digest]``.
    client:
        An ``httpx.Client``; created on first use when omitted.
    timeout:
        Request timeout in seconds for the default client.
    """

    def __init__(
        self,
        reference: str,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        parsed = urlparse(reference)
        if parsed.scheme != "oci":
            raise StoreConfigError(f"Not an oci:// reference: {reference!r}")

        self.uri = reference
        location = (parsed.netloc + parsed.path).strip("/")
        location, _, digest = location.partition("@")
        repository, sep, image = location.rpartition("/")
        if not sep or not repository or not image:
            raise StoreConfigError(
                f"Image reference must be registry/[repository/]image: {reference!r}"
            )

        tag = ""
        if ":" in image:
            image, _, tag = image.partition(":")
        if not image:
            raise StoreConfigError(f"Image reference has no image name: {reference!r}")

        self.repository = repository
        self.image = image
        self.reference = digest or tag or DEFAULT_TAG
        self.registry, _, namespace = repository.partition("/")
        self.name = f"{namespace}/{image}" if namespace else image

        self._client = client
        self._timeout = timeout
        self._token: str | None = None

    @classmethod
    def from_uri(cls, uri: str, **kwargs: Any) -> OCIStore:
        return cls(uri, **kwargs)

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, follow_redirects=True)
        return self._client

    @property
    def base_url(self) -> str:
        host = _API_HOSTS.get(self.registry, self.registry)
        scheme = "http" if host.startswith(("localhost", "127.0.0.1")) else "https"
        return f"{scheme}://{host}/v2/{self.name}"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _authenticate(self, challenge: str) -> None:
        params = parse_auth_challenge(challenge)
        realm = params.pop("realm", "")
        if not realm:
            raise StoreIOError(
                f"Registry {self.registry} requires unsupported auth: {challenge!r}"
            )
        params.setdefault("scope", f"repository:{self.name}:pull")
        response = self.client.get(realm, params=params)
        response.raise_for_status()
        body = response.json()
        self._token = body.get("token") or body.get("access_token")
        if not self._token:
            raise StoreIOError(f"Registry {self.registry} returned no token")

    def _get_manifest(self, reference: str) -> tuple[str, dict[str, Any]]:
        """Fetch a manifest; returns ``(digest, parsed body)``."""
        url = f"{self.base_url}/manifests/{reference}"
        headers = {"Accept": ACCEPT_HEADER}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        response = self.client.get(url, headers=headers)
        if response.status_code == 401 and "WWW-Authenticate" in response.headers:
            self._authenticate(response.headers["WWW-Authenticate"])
            headers["Authorization"] = f"Bearer {self._token}"
            response = self.client.get(url, headers=headers)
        response.raise_for_status()

        digest = response.headers.get("Docker-Content-Digest") or (
            f"sha256:{sha256_hex(response.content)}"
        )
        body = response.json()
        if not body.get("mediaType"):
            body["mediaType"] = response.headers.get("Content-Type", "").split(";")[0]
        return digest, body

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def _artifact(self, digest: str) -> Artifact:
        return Artifact(
            path=f"{self.repository}/{self.image}@{digest}",
            checksum={"digest": digest},
        )

    def _collect(self, reference: str, found: dict[str, Artifact]) -> None:
        digest, body = self._get_manifest(reference)
        found.setdefault(digest, self._artifact(digest))
        media_type = body.get("mediaType", "")

        if media_type in INDEX_MEDIA_TYPES or "manifests" in body:
            for child in body.get("manifests", []):
                if child["digest"] not in found:
                    self._collect(child["digest"], found)
            return

        descriptors = [body["config"], *body.get("layers", [])]
        for descriptor in descriptors:
            found.setdefault(descriptor["digest"], self._artifact(descriptor["digest"]))

    def snap(self) -> Snapshot:
        found: dict[str, Artifact] = {}
        try:
            self._collect(self.reference, found)
        except httpx.HTTPError as exc:
            raise StoreIOError(
                f"Reading image {self.repository}/{self.image}:{self.reference}: {exc}"
            ) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreIOError(
                f"Malformed manifest for {self.repository}/{self.image}: {exc}"
            ) from exc

        logger.info(
            "Snapshot of %s: %d descriptor(s)", self.uri, len(found)
        )
        return Snapshot.from_artifacts(self.uri, list(found.values()))
