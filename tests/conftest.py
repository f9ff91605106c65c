"""Shared test fixtures for runwitness."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from runwitness.builders.base import BaseBuilder
from runwitness.config import WitnessConfig
from runwitness.models.attestation import (
    BuilderInfo,
    BuildMetadata,
    Material,
    SLSAPredicate,
)
from runwitness.models.runs import Run, RunState
from runwitness.stores import default_store_registry

FIXED_TIME = datetime(1976, 2, 10, 23, 30, 30, tzinfo=timezone.utc)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def fixed_time() -> datetime:
    return FIXED_TIME


@pytest.fixture
def config() -> WitnessConfig:
    """Settings with a poll interval short enough for tests."""
    return WitnessConfig(poll_interval_seconds=0.01, _env_file=None)


# ---------------------------------------------------------------------------
# Fake build system
# ---------------------------------------------------------------------------


class FakeBuilder(BaseBuilder):
    """Build system that reports a scripted sequence of states.

    Each refresh consumes the next state; the last one repeats. *on_refresh*
    runs before the state is applied and receives the 1-based call count,
    which lets a test "build" artifacts while the run is in progress.
    """

    name = "fake"

    def __init__(
        self,
        states: list[RunState],
        on_refresh: Callable[[int], None] | None = None,
    ) -> None:
        self.states = list(states)
        self.on_refresh = on_refresh
        self.refresh_calls = 0

    @classmethod
    def matches(cls, spec_url: str) -> bool:
        return spec_url.startswith("fake://")

    def get_run(self, spec_url: str) -> Run:
        return Run(spec_url=spec_url, run_id=spec_url.rsplit("/", 1)[-1])

    def refresh_run(self, run: Run) -> None:
        self.refresh_calls += 1
        if self.on_refresh is not None:
            self.on_refresh(self.refresh_calls)
        state = self.states[min(self.refresh_calls, len(self.states)) - 1]
        run.status = state.value
        if state == RunState.TERMINATED:
            run.is_success = True
            run.ended_at = FIXED_TIME
        self._apply_state(run, state)

    def build_predicate(self, run: Run) -> SLSAPredicate:
        return SLSAPredicate(
            builder=BuilderInfo(id="https://builder.example/fake@v1"),
            build_type="https://builder.example/FakeBuild@v1",
            metadata=BuildMetadata(
                build_invocation_id=run.run_id,
                build_finished_on=run.ended_at,
            ),
            materials=[
                Material(uri="git+https://example.com/org/repo", digest={"sha1": "a" * 40})
            ],
        )


@pytest.fixture
def make_fake_builder() -> Callable[..., FakeBuilder]:
    """Factory fixture: a FakeBuilder terminating after the given states."""

    def _factory(
        states: list[RunState] | None = None,
        on_refresh: Callable[[int], None] | None = None,
    ) -> FakeBuilder:
        if states is None:
            states = [RunState.RUNNING, RunState.RUNNING, RunState.TERMINATED]
        return FakeBuilder(states, on_refresh=on_refresh)

    return _factory


@pytest.fixture
def make_watcher(config: WitnessConfig, make_fake_builder):
    """Factory fixture: a Watcher around a FakeBuilder."""
    from runwitness.core.watcher import Watcher

    def _factory(builder: BaseBuilder | None = None, spec_url: str = "fake://runs/42"):
        return Watcher(
            builder or make_fake_builder(),
            spec_url=spec_url,
            stores=default_store_registry(config),
            config=config,
        )

    return _factory


# ---------------------------------------------------------------------------
# Fake Cloud Storage client
# ---------------------------------------------------------------------------


class FakeBlob:
    def __init__(
        self,
        name: str,
        data: bytes = b"",
        content_type: str = "application/octet-stream",
        updated: datetime | None = FIXED_TIME,
        fail: bool = False,
    ) -> None:
        self.name = name
        self.data = data
        self.size = len(data)
        self.content_type = content_type
        self.updated = updated
        self.fail = fail

    def download_to_file(self, fh: Any) -> None:
        if self.fail:
            raise OSError(f"simulated download failure for {self.name}")
        fh.write(self.data)


class FakePage(list):
    def __init__(self, blobs: list[FakeBlob], prefixes: set[str]) -> None:
        super().__init__(blobs)
        self.prefixes = prefixes


class FakeListing:
    def __init__(self, pages: list[FakePage]) -> None:
        self.pages = iter(pages)


class FakeBucket:
    def __init__(self, client: FakeGCSClient) -> None:
        self._client = client

    def blob(self, name: str) -> FakeBlob:
        return self._client.objects[name]


class FakeGCSClient:
    """In-memory stand-in for ``google.cloud.storage.Client``.

    ``list_blobs`` follows the delimiter semantics of the real service:
    objects deeper than one level below the prefix are rolled up into
    ``page.prefixes``.
    """

    def __init__(self, blobs: list[FakeBlob], page_size: int = 2) -> None:
        self.objects = {b.name: b for b in blobs}
        self.page_size = page_size
        self.listed_prefixes: list[str] = []

    def bucket(self, name: str) -> FakeBucket:
        return FakeBucket(self)

    def list_blobs(self, bucket: str, prefix: str = "", delimiter: str | None = None) -> FakeListing:
        self.listed_prefixes.append(prefix)
        blobs: list[FakeBlob] = []
        prefixes: set[str] = set()
        for name in sorted(self.objects):
            if not name.startswith(prefix):
                continue
            rest = name[len(prefix):]
            if delimiter and delimiter in rest:
                prefixes.add(prefix + rest.split(delimiter, 1)[0] + delimiter)
                continue
            blobs.append(self.objects[name])

        pages = [
            FakePage(blobs[i:i + self.page_size], set())
            for i in range(0, len(blobs), self.page_size)
        ] or [FakePage([], set())]
        pages[-1].prefixes = prefixes
        return FakeListing(pages)


@pytest.fixture
def make_gcs_client() -> Callable[..., FakeGCSClient]:
    def _factory(blobs: list[FakeBlob], page_size: int = 2) -> FakeGCSClient:
        return FakeGCSClient(blobs, page_size=page_size)

    return _factory


@pytest.fixture
def make_blob() -> Callable[..., FakeBlob]:
    return FakeBlob
