"""Artifact store drivers — registry mapping URI scheme to driver.

Usage::

    from runwitness.stores import default_store_registry

    registry = default_store_registry(config)
    store = registry.resolve("gs://my-bucket/releases/v1.0")
    snapshot = store.snap()
"""

from __future__ import annotations

from runwitness.config import WitnessConfig
from runwitness.stores.base import (
    Store,
    StoreConfigError,
    StoreIOError,
    StoreRegistry,
)
from runwitness.stores.directory import DirectoryStore
from runwitness.stores.gcs import GCSStore
from runwitness.stores.oci import OCIStore


def default_store_registry(config: WitnessConfig | None = None) -> StoreRegistry:
    """Build a registry with the file, gs and oci drivers."""
    config = config or WitnessConfig()
    registry = StoreRegistry()
    registry.register("file", DirectoryStore.from_uri)
    registry.register(
        "gs",
        lambda uri: GCSStore.from_uri(uri, workers=config.download_workers),
    )
    registry.register(
        "oci",
        lambda uri: OCIStore.from_uri(uri, timeout=config.http_timeout_seconds),
    )
    return registry


__all__ = [
    "DirectoryStore",
    "GCSStore",
    "OCIStore",
    "Store",
    "StoreConfigError",
    "StoreIOError",
    "StoreRegistry",
    "default_store_registry",
]
