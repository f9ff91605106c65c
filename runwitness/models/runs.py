"""Build run model and its one-directional state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunState(str, Enum):
    """Lifecycle of one execution on an external build system."""

    PENDING = "pending"
    RUNNING = "running"
    TERMINATED = "terminated"


# TERMINATED has no outgoing transitions: once a run ends it is never
# polled again.
VALID_RUN_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.PENDING: {RunState.RUNNING, RunState.TERMINATED},
    RunState.RUNNING: {RunState.TERMINATED},
    RunState.TERMINATED: set(),
}


class InvalidRunTransitionError(RuntimeError):
    """Raised when a run is asked to move to a state it cannot reach."""


class Run(BaseModel):
    """One execution of an external build, normalized across backends.

    Builders create runs with ``get_run()`` and update them in place with
    ``refresh_run()``. Every state change goes through :meth:`advance`,
    which rejects anything that would leave the terminal state.
    """

    model_config = ConfigDict(validate_assignment=True)

    spec_url: str
    run_id: str = ""
    state: RunState = RunState.PENDING
    status: str = ""  # backend-native status string
    is_success: bool = False
    started_at: datetime | None = None
    ended_at: datetime | None = None
    system_data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.state != RunState.TERMINATED

    def advance(self, target: RunState) -> None:
        """Move the run to *target*, enforcing VALID_RUN_TRANSITIONS.

        Re-entering the current state is a no-op so refreshes that observe
        no change do not need special casing.
        """
        if target == self.state:
            return
        self.check_transition(target)
        self.state = target

    def check_transition(self, target: RunState) -> None:
        """Raise InvalidRunTransitionError if *target* is unreachable; never mutates."""
        if target == self.state:
            return
        allowed = VALID_RUN_TRANSITIONS.get(self.state, set())
        if target not in allowed:
            raise InvalidRunTransitionError(
                f"Cannot move run {self.run_id or self.spec_url} from "
                f"{self.state.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
