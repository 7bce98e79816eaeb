"""
Error taxonomy for sprintlock.

Recoverable errors (timeouts, worker failures, integration validation
failures, single corrupt checkpoints) are resolved by requeueing work into the
next wave or falling back to an older checkpoint. ``ConflictViolation`` and
``NoUsableCheckpoint`` are fatal and abort the run.
"""

from typing import Optional


class SprintlockError(Exception):
    """Base class for all sprintlock errors."""


class ConflictViolation(SprintlockError):
    """An ownership grant overlapped an existing holder.

    This is a programming error: a correct plan never produces it.
    """

    def __init__(self, path: str, holder: str, requester: str, held_path: Optional[str] = None):
        self.path = path
        self.holder = holder
        self.requester = requester
        self.held_path = held_path or path
        super().__init__(
            f"Task {requester!r} cannot take {path!r}: "
            f"{self.held_path!r} is held by {holder!r}"
        )


class InvalidTransition(SprintlockError):
    """A worker session was asked to move to a state it cannot reach."""

    def __init__(self, session_id: str, current: str, target: str):
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(f"Session {session_id}: illegal transition {current} -> {target}")


class WorkerTimeout(SprintlockError):
    """A worker stopped heartbeating within the timeout window."""

    def __init__(self, task_id: str, silence: float):
        self.task_id = task_id
        self.silence = silence
        super().__init__(f"Task {task_id} missed heartbeats for {silence:.2f}s")


class WorkerFailure(SprintlockError):
    """A worker reported a terminal error."""

    def __init__(self, task_id: str, reason: str):
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Task {task_id} failed: {reason}")


class PermanentTaskFailure(WorkerFailure):
    """A task exhausted its retry budget."""

    def __init__(self, task_id: str, reason: str, attempts: int):
        self.attempts = attempts
        super().__init__(task_id, f"{reason} (gave up after {attempts} attempts)")


class IntegrationValidationFailure(SprintlockError):
    """A succeeded task's output was rejected by the merger."""

    def __init__(self, task_id: str, errors: list[str]):
        self.task_id = task_id
        self.errors = list(errors)
        super().__init__(f"Task {task_id} failed integration: {'; '.join(self.errors)}")


class CheckpointCorruption(SprintlockError):
    """A checkpoint file could not be parsed or failed validation."""

    def __init__(self, version: int, reason: str):
        self.version = version
        self.reason = reason
        super().__init__(f"Checkpoint {version} is corrupt: {reason}")


class CheckpointNotFound(SprintlockError):
    """The requested checkpoint version does not exist."""

    def __init__(self, version: int):
        self.version = version
        super().__init__(f"Checkpoint {version} does not exist")


class NoUsableCheckpoint(SprintlockError):
    """Every retained checkpoint down to the retention floor failed validation."""

    def __init__(self, tried: list[int], reasons: Optional[dict[int, str]] = None):
        self.tried = list(tried)
        self.reasons = dict(reasons or {})
        if self.tried:
            span = f"versions {max(self.tried)}..{min(self.tried)}"
        else:
            span = "no checkpoints on disk"
        super().__init__(f"No usable checkpoint ({span})")


class PinnedItemError(SprintlockError):
    """A pinned cache entry was removed without being demoted first."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Cache key {key!r} is pinned; demote it before removal")


class RunAborted(SprintlockError):
    """A fatal error stopped the run.

    Carries the diagnostic a caller needs: which tasks caused the abort and
    the last checkpoint version known to be good.
    """

    def __init__(
        self,
        reason: str,
        offending_tasks: list[str],
        last_good_checkpoint: Optional[int],
        cause: Optional[BaseException] = None,
    ):
        self.reason = reason
        self.offending_tasks = list(offending_tasks)
        self.last_good_checkpoint = last_good_checkpoint
        self.cause = cause
        super().__init__(
            f"Run aborted: {reason}; offending tasks: {', '.join(self.offending_tasks) or '-'}; "
            f"last good checkpoint: {last_good_checkpoint if last_good_checkpoint is not None else 'none'}"
        )


class SnapshotNotFound(SprintlockError):
    """No named snapshot exists under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Snapshot {name!r} does not exist")
