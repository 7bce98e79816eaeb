"""
Integration merger.

Runs once every session of a wave is terminal. Each succeeded task is
validated: it may only write paths it declared, its dependencies must be
completed, and every configured validator must pass. Rejected tasks, and the
tasks that depend on them, go back to the pool. The rest are committed to the
workspace one task at a time, each task's write set all or nothing.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from .errors import IntegrationValidationFailure
from .models import Priority, Task, TaskOutput
from .utils.atomic_io import atomic_write_text
from .utils.jsonl_logger import get_logger, log_with_context
from .utils.paths import is_path_ancestor

logger = get_logger("merger")

Validator = Callable[[Task, TaskOutput], Iterable[str]]


class Workspace(ABC):
    """Where committed task output lands."""

    @abstractmethod
    def read(self, path: str) -> Optional[str]:
        """Current content of a path, or None if absent."""

    @abstractmethod
    def write(self, path: str, content: str) -> None:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        pass

    def commit(self, writes: dict[str, str]) -> None:
        """Apply a write set; on error restore every path already written."""
        previous = {path: self.read(path) for path in writes}
        written: list[str] = []
        try:
            for path, content in writes.items():
                self.write(path, content)
                written.append(path)
        except Exception:
            for path in reversed(written):
                if previous[path] is None:
                    self.delete(path)
                else:
                    self.write(path, previous[path])
            raise


class InMemoryWorkspace(Workspace):
    def __init__(self, files: Optional[dict[str, str]] = None):
        self.files: dict[str, str] = dict(files or {})

    def read(self, path: str) -> Optional[str]:
        return self.files.get(path)

    def write(self, path: str, content: str) -> None:
        self.files[path] = content

    def delete(self, path: str) -> None:
        self.files.pop(path, None)


class DirectoryWorkspace(Workspace):
    """Workspace rooted at a directory; each path is written with a temp file and rename."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        return self.root / Path(*path.split("/"))

    def read(self, path: str) -> Optional[str]:
        target = self._resolve(path)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")

    def write(self, path: str, content: str) -> None:
        atomic_write_text(self._resolve(path), content)

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.exists():
            os.remove(target)


class WaveOutcome(str, Enum):
    ADVANCED = "advanced"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class MergeResult:
    """What the merger decided for one wave."""

    wave: int
    outcome: WaveOutcome
    committed: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)
    cascaded: list[str] = field(default_factory=list)
    failures: list[IntegrationValidationFailure] = field(default_factory=list)

    @property
    def penalized(self) -> list[str]:
        """Rejected for their own output, not because of a dependency."""
        return [task_id for task_id in self.rejected if task_id not in self.cascaded]

    def decision(self) -> dict[str, object]:
        return {
            "wave": self.wave,
            "outcome": self.outcome.value,
            "committed": list(self.committed),
            "rejected": dict(self.rejected),
        }


def declared_writes_only(task: Task, output: TaskOutput) -> list[str]:
    """Output may only touch declared writes or paths under declared directories."""
    return [
        f"undeclared write: {path}"
        for path in output.writes
        if not any(path == w or is_path_ancestor(w, path) for w in task.writes)
    ]


class IntegrationMerger:
    def __init__(
        self,
        workspace: Optional[Workspace] = None,
        validators: Iterable[Validator] = (),
        cache=None,
    ):
        self.workspace = workspace or InMemoryWorkspace()
        self.validators: list[Validator] = [declared_writes_only, *validators]
        self.cache = cache

    def add_validator(self, validator: Validator) -> None:
        self.validators.append(validator)

    def merge(
        self,
        wave: int,
        tasks: dict[str, Task],
        outputs: dict[str, TaskOutput],
        completed: Iterable[str] = (),
        failed: Iterable[str] = (),
    ) -> MergeResult:
        """Validate and commit the succeeded tasks of a wave.

        Args:
            wave: Wave number
            tasks: Every task of the wave by id, in submission order
            outputs: Outputs of the tasks that succeeded
            completed: Tasks committed in earlier waves
            failed: Tasks of this wave that failed or timed out
        """
        completed = set(completed)
        failed = set(failed)
        succeeded = [task_id for task_id in tasks if task_id in outputs]

        rejected: dict[str, str] = {}
        failures: list[IntegrationValidationFailure] = []
        for task_id in succeeded:
            errors = self._validate(
                tasks[task_id], outputs[task_id], completed | failed, set(succeeded)
            )
            if errors:
                failure = IntegrationValidationFailure(task_id, errors)
                failures.append(failure)
                rejected[task_id] = "; ".join(errors)

        cascaded = self._cascade(tasks, succeeded, rejected, failed)

        committed: list[str] = []
        for task_id in succeeded:
            if task_id in rejected:
                continue
            upstream = [d for d in tasks[task_id].depends_on if d in rejected]
            if upstream:
                rejected[task_id] = f"depends on rejected {', '.join(upstream)}"
                cascaded.append(task_id)
                continue
            try:
                self.workspace.commit(outputs[task_id].writes)
            except Exception as e:
                failure = IntegrationValidationFailure(task_id, [f"commit failed: {e}"])
                failures.append(failure)
                rejected[task_id] = str(failure)
                continue
            committed.append(task_id)

        for failure in failures:
            log_with_context(
                logger, logging.WARNING, "Rejected task output", error=str(failure),
                wave=wave, task_id=failure.task_id,
            )

        if not committed:
            outcome = WaveOutcome.FAILED
        elif rejected or failed:
            outcome = WaveOutcome.DEGRADED
        else:
            outcome = WaveOutcome.ADVANCED

        result = MergeResult(
            wave=wave,
            outcome=outcome,
            committed=committed,
            rejected=rejected,
            cascaded=cascaded,
            failures=failures,
        )
        self._record(result)
        log_with_context(
            logger,
            logging.INFO,
            "Merged wave",
            wave=wave,
            outcome=outcome.value,
            committed=len(committed),
            rejected=len(rejected),
        )
        return result

    def _validate(
        self, task: Task, output: TaskOutput, settled: set[str], succeeded: set[str]
    ) -> list[str]:
        # Dependencies that failed this wave are handled by the cascade.
        errors: list[str] = []
        missing = [d for d in task.depends_on if d not in settled and d not in succeeded]
        if missing:
            errors.append(f"dependencies not completed: {', '.join(missing)}")
        for validator in self.validators:
            try:
                errors.extend(validator(task, output))
            except Exception as e:
                name = getattr(validator, "__name__", validator.__class__.__name__)
                errors.append(f"validator {name} raised {e.__class__.__name__}: {e}")
        return errors

    @staticmethod
    def _cascade(
        tasks: dict[str, Task], succeeded: list[str], rejected: dict[str, str], failed: set[str]
    ) -> list[str]:
        """Reject succeeded tasks that depend, transitively, on a rejected or failed task."""
        cascaded: list[str] = []
        changed = True
        while changed:
            changed = False
            for task_id in succeeded:
                if task_id in rejected:
                    continue
                upstream = [d for d in tasks[task_id].depends_on if d in rejected or d in failed]
                if upstream:
                    rejected[task_id] = f"depends on rejected {', '.join(upstream)}"
                    cascaded.append(task_id)
                    changed = True
        return cascaded

    def _record(self, result: MergeResult) -> None:
        if self.cache is None:
            return
        self.cache.set(f"decision:wave-{result.wave}", result.decision(), Priority.IMPORTANT)
