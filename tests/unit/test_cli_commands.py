"""Unit tests for the CLI — Typer command registration and the attest flows.

The build system is replaced with the fake builder from conftest by patching
the registry factory the Watcher uses.
"""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from runwitness import __version__
from runwitness.builders import BuilderRegistry
from runwitness.cli.app import app
from runwitness.models.runs import Run, RunState

runner = CliRunner()


@pytest.fixture
def fake_backend(monkeypatch, make_fake_builder):
    """Route every spec URL to a FakeBuilder and keep polling fast."""
    builder = make_fake_builder([RunState.RUNNING, RunState.TERMINATED])
    monkeypatch.setattr(
        "runwitness.core.watcher.default_builder_registry",
        lambda config=None: BuilderRegistry([builder]),
    )
    monkeypatch.setenv("RUNWITNESS_POLL_INTERVAL_SECONDS", "0.01")
    return builder


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "Usage" in result.output or "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("attest", "start", "finish", "version"):
            assert command in result.output

    @pytest.mark.parametrize("command", ["attest", "start", "finish"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


# ---------------------------------------------------------------------------
# Test: attest / start / finish
# ---------------------------------------------------------------------------


class TestAttestCommand:
    def test_attest_writes_attestation(self, fake_backend, tmp_dir: Path):
        out = tmp_dir / "dist"
        out.mkdir()
        target = tmp_dir / "provenance.json"

        def build(call: int) -> None:
            (out / "tool.tar.gz").write_bytes(b"release")

        fake_backend.on_refresh = build

        result = runner.invoke(app, [
            "attest", "fake://runs/1",
            "--artifacts", f"file://{out}",
            "--vcs-url", "git+https://example.com/org/source@" + "c" * 40,
            "--output", str(target),
        ])

        assert result.exit_code == 0, result.output
        doc = json.loads(target.read_text())
        assert [s["name"] for s in doc["subject"]] == ["tool.tar.gz"]
        uris = [m["uri"] for m in doc["predicate"]["materials"]]
        assert uris == ["git+https://example.com/org/source", "git+https://example.com/org/repo"]
        assert doc["predicate"]["materials"][0]["digest"] == {"sha1": "c" * 40}
        assert fake_backend.refresh_calls == 2

    def test_attest_unknown_build_system(self, tmp_dir: Path):
        result = runner.invoke(app, ["attest", "jenkins://job/1", "--no-watch"])
        assert result.exit_code == 1
        assert "Attestation failed" in result.output

    def test_attest_wraps_malformed_run(self, fake_backend):
        def malformed(spec_url: str) -> Run:
            return Run(spec_url=spec_url, started_at="not-a-date")

        fake_backend.get_run = malformed

        result = runner.invoke(app, ["attest", "fake://runs/1"])

        assert result.exit_code == 1
        assert "Attestation failed" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_attest_bad_store_uri(self, fake_backend):
        result = runner.invoke(app, ["attest", "fake://runs/1", "--artifacts", "s3://bucket/x"])
        assert result.exit_code == 1
        assert "s3" in result.output


class TestInvalidConfiguration:
    @pytest.mark.parametrize("command", ["attest", "start", "finish"])
    def test_unknown_log_level(self, fake_backend, tmp_dir: Path, command):
        args = [command, "fake://runs/1", "--log-level", "bogus"]
        if command == "finish":
            args += ["--partial", str(tmp_dir / "partial.json")]

        result = runner.invoke(app, args)

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert "Unknown log level" in result.output
        assert isinstance(result.exception, SystemExit)

    def test_bad_environment_value(self, fake_backend, monkeypatch):
        monkeypatch.setenv("RUNWITNESS_POLL_INTERVAL_SECONDS", "soon")

        result = runner.invoke(app, ["start", "fake://runs/1"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestStartFinishCommands:
    def test_start_then_finish(self, fake_backend, tmp_dir: Path):
        out = tmp_dir / "dist"
        out.mkdir()
        (out / "existing.txt").write_text("before")
        partial = tmp_dir / "partial.json"
        message = tmp_dir / "message.json"

        result = runner.invoke(app, [
            "start", "fake://runs/9",
            "--artifacts", f"file://{out}",
            "--vcs-url", "git+https://example.com/org/other@" + "d" * 40,
            "--output", str(partial),
            "--message", str(message),
        ])
        assert result.exit_code == 0, result.output

        state = tmp_dir / "partial.json.storage-snap.json"
        assert state.exists()
        partial_doc = json.loads(partial.read_text())
        assert partial_doc["subject"] == []
        payload = json.loads(message.read_text())
        assert payload["artifacts"] == [f"file://{out}"]
        assert json.loads(base64.b64decode(payload["snapshots"]))["version"] == 1

        (out / "built.txt").write_text("after")
        final = tmp_dir / "final.json"
        result = runner.invoke(app, [
            "finish", "fake://runs/9",
            "--partial", str(partial),
            "--output", str(final),
        ])
        assert result.exit_code == 0, result.output

        doc = json.loads(final.read_text())
        assert [s["name"] for s in doc["subject"]] == ["built.txt"]
        uris = [m["uri"] for m in doc["predicate"]["materials"]]
        assert uris == ["git+https://example.com/org/other", "git+https://example.com/org/repo"]

    def test_start_to_stdout_without_state(self, fake_backend):
        result = runner.invoke(app, ["start", "fake://runs/9"])
        assert result.exit_code == 0, result.output
        assert "predicateType" in result.output

    def test_finish_missing_partial(self, fake_backend, tmp_dir: Path):
        result = runner.invoke(app, [
            "finish", "fake://runs/9", "--partial", str(tmp_dir / "nope.json"),
        ])
        assert result.exit_code == 1
        assert "Reading partial attestation failed" in result.output

    def test_finish_rejects_tampered_state(self, fake_backend, tmp_dir: Path):
        partial = tmp_dir / "partial.json"
        assert runner.invoke(app, ["start", "fake://runs/9", "--output", str(partial)]).exit_code == 0
        (tmp_dir / "partial.json.storage-snap.json").write_text('{"version": 99, "snapshots": {}}')

        result = runner.invoke(app, ["finish", "fake://runs/9", "--partial", str(partial)])

        assert result.exit_code == 1
        assert "version" in result.output
