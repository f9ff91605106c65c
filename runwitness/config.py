"""Runtime configuration — env-driven.

Reads from a .env file and RUNWITNESS_* environment variables using
pydantic-settings. Nothing here is a process-wide singleton: callers build
a ``WitnessConfig`` and pass it to the watcher, stores and builders.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class WitnessConfig(BaseSettings):
    """Settings shared by the watcher, store drivers and builders.

    Examples
    --------
    Override via environment::

        export RUNWITNESS_POLL_INTERVAL_SECONDS=10
        export RUNWITNESS_GITHUB_TOKEN=ghp_...
        export RUNWITNESS_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RUNWITNESS_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"
    debug: bool = False

    # Watch loop
    poll_interval_seconds: float = 3.0

    # Store drivers
    download_workers: int = 4
    http_timeout_seconds: float = 30.0
    snapshot_state_suffix: str = ".storage-snap.json"

    # Builders
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    cloudbuild_api_url: str = "https://cloudbuild.googleapis.com/v1"

    def snapshot_state_path(self, output_path: Path | str | None) -> Path | None:
        """Where to persist storage snapshots next to an attestation file.

        Returns ``None`` when the attestation goes to stdout.
        """
        if not output_path:
            return None
        output = Path(output_path)
        return output.with_name(output.name + self.snapshot_state_suffix)
