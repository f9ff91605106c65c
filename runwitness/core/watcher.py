"""Build watcher — the central coordinator for one attested run.

The Watcher owns a Builder and the artifact stores registered for the run.
It snapshots the stores before the build, polls the builder until the run
terminates, snapshots again, and assembles the provenance attestation from
the builder's predicate and the per-store deltas.

The work can be split across processes: ``start_attestation`` snapshots and
persists the pre-build state, ``finish_attestation`` completes it later.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from runwitness.builders import BuilderRegistry, default_builder_registry
from runwitness.builders.base import (
    BaseBuilder,
    BuilderConfigError,
    BuilderError,
    RunRefreshError,
)
from runwitness.config import WitnessConfig
from runwitness.core.delta import compute_delta
from runwitness.core.provenance import (
    build_start_message,
    merge_materials,
    parse_vcs_locator,
    subjects_from_artifacts,
)
from runwitness.core.snapshot_state import (
    dump_snapshots,
    load_snapshots,
    save_snapshots,
)
from runwitness.models.artifacts import Artifact, Snapshot
from runwitness.models.attestation import Attestation, Material, SLSAPredicate
from runwitness.models.messages import StartMessage
from runwitness.models.runs import Run
from runwitness.stores import Store, StoreRegistry, default_store_registry

logger = logging.getLogger(__name__)


class WatchCancelledError(RuntimeError):
    """Raised when a watch is cancelled before the run terminated."""


class Watcher:
    """Observes one build run and attests to what it produced.

    Parameters
    ----------
    builder:
        Adapter for the build system running the build.
    spec_url:
        Run specification URL the watcher was created for.
    stores:
        Registry used to resolve artifact source URIs. Defaults to the
        file, gs and oci drivers.
    config:
        Runtime settings. Uses defaults/environment if not provided.
    """

    def __init__(
        self,
        builder: BaseBuilder,
        *,
        spec_url: str = "",
        stores: StoreRegistry | None = None,
        config: WitnessConfig | None = None,
    ) -> None:
        self.config = config or WitnessConfig()
        self.builder = builder
        self.spec_url = spec_url
        self.store_registry = stores or default_store_registry(self.config)
        self.artifact_stores: list[Store] = []
        # Pre-build snapshots, keyed by store URI
        self.snapshots: dict[str, Snapshot] = {}

    @classmethod
    def from_spec_url(
        cls,
        spec_url: str,
        *,
        builders: BuilderRegistry | None = None,
        stores: StoreRegistry | None = None,
        config: WitnessConfig | None = None,
    ) -> Watcher:
        """Resolve the builder for *spec_url* and create a watcher for it."""
        config = config or WitnessConfig()
        registry = builders or default_builder_registry(config)
        builder = registry.resolve(spec_url)
        return cls(builder, spec_url=spec_url, stores=stores, config=config)

    # ------------------------------------------------------------------
    # Artifact sources
    # ------------------------------------------------------------------

    def add_artifact_source(self, uri: str) -> Store:
        """Register an artifact store to watch for new artifacts.

        Registering a URI that is already watched returns the existing store.
        """
        store = self.store_registry.resolve(uri)
        for existing in self.artifact_stores:
            if existing.uri == store.uri:
                logger.debug("Artifact source %s already registered", uri)
                return existing
        self.artifact_stores.append(store)
        logger.info("Watching artifact source %s", uri)
        return store

    @property
    def artifact_sources(self) -> list[str]:
        return [store.uri for store in self.artifact_stores]

    def snap(self) -> dict[str, Snapshot]:
        """Capture the pre-build snapshot of every registered store."""
        snapshots: dict[str, Snapshot] = {}
        for store in self.artifact_stores:
            logger.info("Snapshotting %s", store.uri)
            snapshots[store.uri] = store.snap()
        self.snapshots = snapshots
        return dict(snapshots)

    def save_snapshots(self, path: Path) -> None:
        save_snapshots(self.snapshots, path)

    def load_snapshots(self, path: Path) -> None:
        self.snapshots = load_snapshots(path)

    def collect_artifacts(self) -> list[Artifact]:
        """Re-snapshot every store and return what changed since :meth:`snap`."""
        artifacts: list[Artifact] = []
        for store in self.artifact_stores:
            pre = self.snapshots.get(store.uri)
            if pre is None:
                logger.warning(
                    "No pre-build snapshot for %s; every artifact will be reported",
                    store.uri,
                )
                pre = Snapshot(store_uri=store.uri)
            post = store.snap()
            delta = compute_delta(pre, post)
            logger.info("%s: %d new or changed artifact(s)", store.uri, len(delta))
            artifacts.extend(delta)
        return artifacts

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def get_run(self, spec_url: str | None = None) -> Run:
        spec_url = spec_url or self.spec_url
        try:
            return self.builder.get_run(spec_url)
        except BuilderConfigError:
            raise
        except RunRefreshError as exc:
            raise RunRefreshError(f"Getting run {spec_url}: {exc}") from exc
        except BuilderError as exc:
            raise BuilderError(f"Getting run {spec_url}: {exc}") from exc
        except Exception as exc:
            raise RunRefreshError(f"Getting run {spec_url}: {exc}") from exc

    def watch(self, run: Run, cancel: threading.Event | None = None) -> None:
        """Poll the builder until *run* stops running.

        Refresh failures abort the watch at once; retrying is the caller's
        decision. Setting *cancel* interrupts the wait between polls.
        """
        cancel = cancel or threading.Event()
        interval = self.config.poll_interval_seconds

        while run.is_running:
            try:
                self.builder.refresh_run(run)
            except RunRefreshError:
                raise
            except Exception as exc:
                raise RunRefreshError(
                    f"Refreshing run {run.spec_url}: {exc}"
                ) from exc

            if not run.is_running:
                break
            if cancel.wait(interval):
                raise WatchCancelledError(
                    f"Watch of {run.spec_url} cancelled while run was {run.state.value}"
                )

        logger.info(
            "Run %s finished with status %s", run.run_id or run.spec_url, run.status
        )

    # ------------------------------------------------------------------
    # Attestation
    # ------------------------------------------------------------------

    def attest_run(
        self, run: Run, materials: list[Material] | None = None
    ) -> Attestation:
        """Build the complete attestation for *run*.

        Subjects come from the deltas of every registered store against the
        snapshots taken by :meth:`snap` (or loaded from disk).
        """
        if run.is_running:
            logger.warning("Run %s is still running; attestation is partial", run.spec_url)

        try:
            predicate = self.builder.build_predicate(run)
        except BuilderError as exc:
            raise BuilderError(f"Building predicate for {run.spec_url}: {exc}") from exc
        predicate.materials = merge_materials(materials or [], predicate.materials)

        att = Attestation.new().slsa()
        att.predicate = predicate
        att.subject = subjects_from_artifacts(self.collect_artifacts())
        return att

    def start_attestation(
        self, vcs_locator: str = "", state_path: Path | None = None
    ) -> Attestation:
        """Snapshot every store and return a partial attestation.

        The partial attestation only carries materials. The snapshots are
        written to *state_path* when given, so another process can finish.
        """
        self.snap()
        if state_path is not None:
            self.save_snapshots(state_path)
        elif self.artifact_stores:
            logger.warning("Not saving storage state but artifact sources defined")
        predicate = SLSAPredicate()
        if vcs_locator:
            predicate.materials.append(parse_vcs_locator(vcs_locator))

        att = Attestation.new().slsa()
        att.predicate = predicate
        return att

    def finish_attestation(
        self, run: Run, partial: Attestation, state_path: Path | None = None
    ) -> Attestation:
        """Complete a partial attestation once *run* has terminated.

        Snapshots saved by :meth:`start_attestation` are reloaded from
        *state_path* when given.
        """
        if state_path is not None:
            self.load_snapshots(state_path)
        materials = partial.predicate.materials if partial.predicate else []
        return self.attest_run(run, materials=materials)

    def start_message(
        self, attestation: Attestation, *, include_snapshots: bool = True
    ) -> StartMessage:
        """Build the pub/sub payload for a started attestation."""
        snapshot_data = dump_snapshots(self.snapshots) if include_snapshots else None
        return build_start_message(
            self.spec_url,
            attestation.to_json(),
            self.artifact_sources,
            snapshot_data,
        )
