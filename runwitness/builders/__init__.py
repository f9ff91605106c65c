"""Build system adapters — resolved from a run spec URL.

Usage::

    from runwitness.builders import default_builder_registry

    builder = default_builder_registry(config).resolve(spec_url)
    run = builder.get_run(spec_url)
"""

from __future__ import annotations

from runwitness.builders.base import (
    BaseBuilder,
    BuilderConfigError,
    BuilderError,
    BuilderRegistry,
    RunRefreshError,
)
from runwitness.builders.cloud_build import CloudBuildBuilder
from runwitness.builders.github_actions import GitHubActionsBuilder
from runwitness.config import WitnessConfig


def default_builder_registry(config: WitnessConfig | None = None) -> BuilderRegistry:
    """Build a registry with every supported build system."""
    config = config or WitnessConfig()
    return BuilderRegistry([
        GitHubActionsBuilder(
            config.github_api_url,
            config.github_token,
            timeout=config.http_timeout_seconds,
        ),
        CloudBuildBuilder(
            config.cloudbuild_api_url,
            timeout=config.http_timeout_seconds,
        ),
    ])


__all__ = [
    "BaseBuilder",
    "BuilderConfigError",
    "BuilderError",
    "BuilderRegistry",
    "CloudBuildBuilder",
    "GitHubActionsBuilder",
    "RunRefreshError",
    "default_builder_registry",
]
