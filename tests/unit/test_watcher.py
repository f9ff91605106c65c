"""Unit tests for the Watcher — polling, snapshots and attestation assembly."""

from __future__ import annotations

import base64
import json
import logging
import threading
from pathlib import Path

import pytest

from runwitness.builders.base import BuilderConfigError, RunRefreshError
from runwitness.core.watcher import WatchCancelledError, Watcher
from runwitness.models.runs import Run, RunState
from runwitness.stores.base import StoreConfigError


class TestWatchLoop:
    def test_polls_until_terminated(self, make_watcher, make_fake_builder):
        builder = make_fake_builder([RunState.RUNNING, RunState.RUNNING, RunState.TERMINATED])
        watcher = make_watcher(builder)
        run = watcher.get_run()

        watcher.watch(run)

        assert run.state == RunState.TERMINATED
        assert builder.refresh_calls == 3

    def test_terminated_run_is_not_refreshed(self, make_watcher, make_fake_builder):
        builder = make_fake_builder([RunState.TERMINATED])
        watcher = make_watcher(builder)
        run = watcher.get_run()
        run.advance(RunState.TERMINATED)

        watcher.watch(run)

        assert builder.refresh_calls == 0

    def test_no_wait_after_termination(self, make_watcher, make_fake_builder):
        builder = make_fake_builder([RunState.TERMINATED])
        watcher = make_watcher(builder)
        watcher.config = watcher.config.model_copy(update={"poll_interval_seconds": 60})
        cancel = threading.Event()

        watcher.watch(watcher.get_run(), cancel=cancel)

        assert builder.refresh_calls == 1

    def test_refresh_error_aborts_watch(self, make_watcher, make_fake_builder):
        def explode(call: int) -> None:
            if call == 2:
                raise ConnectionError("backend went away")

        builder = make_fake_builder([RunState.RUNNING], on_refresh=explode)
        watcher = make_watcher(builder)
        run = watcher.get_run()

        with pytest.raises(RunRefreshError, match="backend went away"):
            watcher.watch(run)

        assert builder.refresh_calls == 2
        assert run.state == RunState.RUNNING

    def test_get_run_wraps_unexpected_errors(self, make_watcher, make_fake_builder):
        builder = make_fake_builder()

        def malformed(spec_url: str) -> Run:
            return Run(spec_url=spec_url, started_at="not-a-date")

        builder.get_run = malformed
        watcher = make_watcher(builder)

        with pytest.raises(RunRefreshError, match="fake://runs/42"):
            watcher.get_run()

    def test_get_run_keeps_config_errors(self, make_watcher, make_fake_builder):
        builder = make_fake_builder()

        def reject(spec_url: str) -> Run:
            raise BuilderConfigError(f"malformed {spec_url}")

        builder.get_run = reject

        with pytest.raises(BuilderConfigError, match="malformed"):
            make_watcher(builder).get_run()

    def test_cancel_interrupts_wait(self, make_watcher, make_fake_builder):
        builder = make_fake_builder([RunState.RUNNING])
        watcher = make_watcher(builder)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(WatchCancelledError):
            watcher.watch(watcher.get_run(), cancel=cancel)
        assert builder.refresh_calls == 1


class TestWatcherConstruction:
    def test_from_spec_url_resolves_builder(self, config):
        watcher = Watcher.from_spec_url("github://org/repo/1", config=config)
        assert watcher.builder.name == "github-actions"
        assert watcher.spec_url == "github://org/repo/1"

    def test_from_spec_url_unknown(self, config):
        with pytest.raises(BuilderConfigError):
            Watcher.from_spec_url("ftp://nowhere/1", config=config)

    def test_unknown_store_scheme(self, make_watcher):
        with pytest.raises(StoreConfigError, match="s3"):
            make_watcher().add_artifact_source("s3://bucket/key")

    def test_artifact_sources(self, make_watcher, tmp_dir: Path):
        watcher = make_watcher()
        watcher.add_artifact_source(f"file://{tmp_dir}")
        assert watcher.artifact_sources == [f"file://{tmp_dir}"]

    def test_duplicate_source_is_registered_once(self, make_watcher, tmp_dir: Path):
        watcher = make_watcher()
        first = watcher.add_artifact_source(f"file://{tmp_dir}")
        second = watcher.add_artifact_source(f"file://{tmp_dir}")
        assert second is first
        assert watcher.artifact_sources == [f"file://{tmp_dir}"]

        watcher.snap()
        run = watcher.get_run()
        watcher.watch(run)
        (tmp_dir / "built.txt").write_text("once")

        att = watcher.attest_run(run)

        assert [s.name for s in att.subject] == ["built.txt"]


class TestAttestation:
    def test_attest_run_reports_new_files(self, make_watcher, tmp_dir: Path):
        (tmp_dir / "old.txt").write_text("old")
        watcher = make_watcher()
        watcher.add_artifact_source(f"file://{tmp_dir}")
        watcher.snap()
        run = watcher.get_run()
        watcher.watch(run)
        (tmp_dir / "new.txt").write_text("new")

        att = watcher.attest_run(run)

        assert [s.name for s in att.subject] == ["new.txt"]
        assert att.predicate.builder.id == "https://builder.example/fake@v1"
        assert att.predicate.materials[0].uri == "git+https://example.com/org/repo"

    def test_missing_pre_snapshot_reports_everything(self, make_watcher, tmp_dir: Path, caplog):
        (tmp_dir / "a.txt").write_text("a")
        watcher = make_watcher()
        watcher.add_artifact_source(f"file://{tmp_dir}")

        with caplog.at_level(logging.WARNING):
            artifacts = watcher.collect_artifacts()

        assert [a.path for a in artifacts] == ["a.txt"]
        assert "No pre-build snapshot" in caplog.text

    def test_still_running_logs_warning(self, make_watcher, caplog):
        watcher = make_watcher()
        run = watcher.get_run()
        with caplog.at_level(logging.WARNING):
            att = watcher.attest_run(run)
        assert att.predicate is not None
        assert "still running" in caplog.text

    def test_extra_materials_come_first_and_dedupe(self, make_watcher):
        from runwitness.models.attestation import Material

        watcher = make_watcher()
        run = watcher.get_run()
        run.advance(RunState.TERMINATED)
        vcs = Material(uri="git+https://example.com/org/repo", digest={"sha1": "a" * 40})
        extra = Material(uri="https://example.com/toolchain.tar.gz", digest={"sha256": "0"})

        att = watcher.attest_run(run, materials=[extra, vcs])

        assert [m.uri for m in att.predicate.materials] == [extra.uri, vcs.uri]


class TestStartFinish:
    def test_partial_then_finish(self, make_watcher, make_fake_builder, tmp_dir: Path):
        out = tmp_dir / "out"
        out.mkdir()
        (out / "existing.bin").write_bytes(b"1")
        state = tmp_dir / "att.json.storage-snap.json"

        starter = make_watcher()
        starter.add_artifact_source(f"file://{out}")
        partial = starter.start_attestation(
            "git+https://example.com/org/repo@" + "b" * 40, state_path=state
        )
        assert partial.is_partial
        assert partial.predicate.materials[0].digest == {"sha1": "b" * 40}
        assert state.exists()

        (out / "built.bin").write_bytes(b"2")

        finisher = make_watcher(make_fake_builder([RunState.TERMINATED]))
        finisher.add_artifact_source(f"file://{out}")
        run = finisher.get_run()
        finisher.watch(run)
        final = finisher.finish_attestation(run, partial, state_path=state)

        assert [s.name for s in final.subject] == ["built.bin"]
        assert final.predicate.materials[0].uri == "git+https://example.com/org/repo"
        assert final.predicate.materials[0].digest == {"sha1": "b" * 40}

    def test_start_without_state_path_warns(self, make_watcher, tmp_dir: Path, caplog):
        watcher = make_watcher()
        watcher.add_artifact_source(f"file://{tmp_dir}")
        with caplog.at_level(logging.WARNING):
            watcher.start_attestation()
        assert "Not saving storage state" in caplog.text

    def test_start_message(self, make_watcher, tmp_dir: Path):
        watcher = make_watcher()
        watcher.add_artifact_source(f"file://{tmp_dir}")
        att = watcher.start_attestation()

        message = watcher.start_message(att)

        assert message.spec_url == "fake://runs/42"
        assert json.loads(base64.b64decode(message.attestation))["predicateType"]
        state = json.loads(base64.b64decode(message.snapshots))
        assert list(state["snapshots"]) == [f"file://{tmp_dir}"]

    def test_start_message_without_snapshots(self, make_watcher):
        watcher = make_watcher()
        message = watcher.start_message(watcher.start_attestation(), include_snapshots=False)
        assert message.snapshots == ""
