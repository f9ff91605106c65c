"""Abstract builder: one adapter per external build system.

A builder turns a run-specification URL into a :class:`Run`, refreshes that
run from the backend, and produces the SLSA predicate skeleton describing
it. Builders hold client configuration only; runs are passed in.
"""

from __future__ import annotations

import abc
import logging
from typing import Any

from pydantic import ValidationError

from runwitness.models.attestation import SLSAPredicate
from runwitness.models.runs import Run, RunState

logger = logging.getLogger(__name__)


class BuilderConfigError(ValueError):
    """Raised when no builder understands a spec URL, or it is malformed."""


class BuilderError(RuntimeError):
    """Raised when a build backend request fails."""


class RunRefreshError(BuilderError):
    """Raised when refreshing a run fails; the run keeps its last state."""


class BaseBuilder(abc.ABC):
    """Abstract base for build system adapters.

    Subclasses **must** implement:
        * ``matches(spec_url)`` — whether the URL belongs to this backend.
        * ``get_run(spec_url)`` — fetch the run in its current state.
        * ``refresh_run(run)`` — update *run* in place from the backend.
        * ``build_predicate(run)`` — the provenance skeleton, no subjects.
    """

    #: Short backend name used in logs.
    name: str = ""

    @classmethod
    @abc.abstractmethod
    def matches(cls, spec_url: str) -> bool:
        ...

    @abc.abstractmethod
    def get_run(self, spec_url: str) -> Run:
        ...

    @abc.abstractmethod
    def refresh_run(self, run: Run) -> None:
        ...

    @abc.abstractmethod
    def build_predicate(self, run: Run) -> SLSAPredicate:
        ...

    @staticmethod
    def _apply_state(run: Run, observed: RunState) -> None:
        """Move *run* towards *observed* without ever going backwards.

        Backends occasionally report a started run as queued again (e.g.
        while a runner is reassigned); that is not a state change for us.
        """
        if observed == RunState.PENDING and run.state != RunState.PENDING:
            return
        run.advance(observed)

    @classmethod
    def _apply_observation(
        cls, run: Run, observed: RunState, **fields: Any
    ) -> None:
        """Update *run* from one backend response, all or nothing.

        The new field values and the state change are validated before
        anything is assigned, so a malformed response leaves *run* exactly
        as it was.
        """
        try:
            checked = Run.model_validate({**run.model_dump(), **fields})
        except ValidationError as exc:
            raise RunRefreshError(
                f"Backend returned invalid data for run {run.run_id or run.spec_url}: {exc}"
            ) from exc
        if not (observed == RunState.PENDING and run.state != RunState.PENDING):
            run.check_transition(observed)

        for name in fields:
            setattr(run, name, getattr(checked, name))
        cls._apply_state(run, observed)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class BuilderRegistry:
    """Ordered list of builders; the first one matching a spec URL wins."""

    def __init__(self, builders: list[BaseBuilder] | None = None) -> None:
        self._builders: list[BaseBuilder] = list(builders or [])

    def register(self, builder: BaseBuilder) -> None:
        self._builders.append(builder)
        logger.debug("Registered builder %s", builder.name)

    @property
    def builders(self) -> list[BaseBuilder]:
        return list(self._builders)

    def resolve(self, spec_url: str) -> BaseBuilder:
        for builder in self._builders:
            if builder.matches(spec_url):
                logger.info("Using %s builder for %s", builder.name, spec_url)
                return builder
        raise BuilderConfigError(
            f"No build system recognizes run spec URL {spec_url!r}. "
            f"Known builders: {[b.name for b in self._builders]}"
        )
