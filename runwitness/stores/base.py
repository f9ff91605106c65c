"""Store protocol, errors and the scheme -> driver registry."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

from runwitness.models.artifacts import Snapshot

logger = logging.getLogger(__name__)


class StoreConfigError(ValueError):
    """Raised when a store URI or its configuration is unusable.

    Always raised before any I/O happens.
    """


class StoreIOError(RuntimeError):
    """Raised when listing, downloading or hashing fails during a snapshot."""


@runtime_checkable
class Store(Protocol):
    """An artifact repository that can describe its current contents."""

    uri: str

    def snap(self) -> Snapshot:
        """Read the store and return a fresh snapshot."""
        ...


StoreFactory = Callable[[str], Store]


def uri_scheme(uri: str) -> str:
    """Return the lower-cased scheme of *uri* or raise StoreConfigError."""
    scheme = urlparse(uri).scheme.lower()
    if not scheme:
        raise StoreConfigError(f"Artifact store URI has no scheme: {uri!r}")
    return scheme


class StoreRegistry:
    """Maps URI schemes to store constructors.

    Each watcher owns its own registry; there is no global table to set up
    or tear down.
    """

    def __init__(self) -> None:
        self._factories: dict[str, StoreFactory] = {}

    def register(self, scheme: str, factory: StoreFactory) -> None:
        self._factories[scheme.lower()] = factory
        logger.debug("Registered store driver for scheme %s", scheme)

    @property
    def schemes(self) -> list[str]:
        return sorted(self._factories)

    def resolve(self, uri: str) -> Store:
        """Build the store for *uri* from its scheme."""
        scheme = uri_scheme(uri)
        factory = self._factories.get(scheme)
        if factory is None:
            raise StoreConfigError(
                f"No artifact store driver for scheme {scheme!r} in {uri!r}. "
                f"Known schemes: {self.schemes}"
            )
        return factory(uri)
