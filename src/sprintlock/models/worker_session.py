"""
Worker session model for sprintlock.

This module provides the WorkerSession model and its state machine:

    assigned -> running -> {succeeded | failed | timed-out} -> {reassigned | finalized}
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..errors import InvalidTransition


class SessionState(str, Enum):
    """Lifecycle states of a worker session."""

    ASSIGNED = "assigned"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed-out"
    REASSIGNED = "reassigned"
    FINALIZED = "finalized"


TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.ASSIGNED: frozenset({SessionState.RUNNING, SessionState.REASSIGNED}),
    SessionState.RUNNING: frozenset(
        {SessionState.SUCCEEDED, SessionState.FAILED, SessionState.TIMED_OUT}
    ),
    SessionState.SUCCEEDED: frozenset({SessionState.FINALIZED, SessionState.REASSIGNED}),
    SessionState.FAILED: frozenset({SessionState.FINALIZED, SessionState.REASSIGNED}),
    SessionState.TIMED_OUT: frozenset({SessionState.FINALIZED, SessionState.REASSIGNED}),
    SessionState.REASSIGNED: frozenset(),
    SessionState.FINALIZED: frozenset(),
}

# States in which a worker has stopped executing for the current wave.
WAVE_TERMINAL = frozenset(
    {
        SessionState.SUCCEEDED,
        SessionState.FAILED,
        SessionState.TIMED_OUT,
        SessionState.REASSIGNED,
        SessionState.FINALIZED,
    }
)


class WorkerSession(BaseModel):
    """Coordinator-owned record of one task dispatch."""

    id: str
    task_id: str
    state: SessionState = SessionState.ASSIGNED
    started_at: Optional[float] = None
    last_heartbeat: Optional[float] = None
    retry_count: int = Field(default=0, ge=0)
    progress_percent: int = Field(default=0, ge=0, le=100)
    message: str = ""

    def can_transition(self, target: SessionState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: SessionState) -> None:
        """Move to target, raising InvalidTransition if the state machine forbids it."""
        if not self.can_transition(target):
            raise InvalidTransition(self.id, self.state.value, target.value)
        self.state = target

    @property
    def is_wave_terminal(self) -> bool:
        return self.state in WAVE_TERMINAL
