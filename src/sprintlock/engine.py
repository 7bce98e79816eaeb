"""
Wave engine.

Each wave plans the pending pool, runs the first concurrency group, merges
the results, releases ownership and takes a checkpoint. Requeued tasks return
to the pool and are planned again with everything else in the next wave.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Optional

from .checkpoint_store import CheckpointStore
from .config import Settings, get_config
from .conflicts import ConflictAnalyzer
from .context_cache import ContextCacheManager
from .coordinator import WorkerCoordinator
from .errors import ConflictViolation, NoUsableCheckpoint, PermanentTaskFailure, RunAborted, WorkerTimeout
from .merger import IntegrationMerger, Validator, WaveOutcome, Workspace
from .models import Checkpoint, EngineState, SessionState, Task
from .ownership import OwnershipAssigner, OwnershipRegistry, WavePlan
from .utils.jsonl_logger import get_logger, log_with_context
from .workers import Worker

logger = get_logger("engine")

# Sessions in these states were still executing when the checkpoint was taken.
INTERRUPTED_STATES = frozenset({SessionState.ASSIGNED, SessionState.RUNNING})


@dataclass
class WaveReport:
    wave: int
    tasks: list[str]
    outcome: WaveOutcome
    committed: list[str] = field(default_factory=list)
    requeued: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    timed_out: list[str] = field(default_factory=list)
    checkpoint_version: Optional[int] = None


@dataclass
class RunReport:
    status: str
    waves: list[WaveReport]
    completed: list[str]
    failed: dict[str, str]
    blocked: dict[str, str]
    last_checkpoint: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for wave in data["waves"]:
            wave["outcome"] = WaveOutcome(wave["outcome"]).value
        return data


class Engine:
    """Runs submitted tasks to completion in conflict-free waves."""

    def __init__(
        self,
        worker: Worker,
        settings: Optional[Settings] = None,
        workspace: Optional[Workspace] = None,
        cache: Optional[ContextCacheManager] = None,
        store: Optional[CheckpointStore] = None,
        validators: Iterable[Validator] = (),
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_config()
        self.worker = worker
        self.analyzer = ConflictAnalyzer(self.settings.coordinator.critical_paths)
        self.assigner = OwnershipAssigner(self.analyzer, self.settings.coordinator.tie_break)
        self.registry = OwnershipRegistry()
        self.cache = cache if cache is not None else ContextCacheManager(self.settings.cache, clock=clock)
        self.coordinator = WorkerCoordinator(
            self.registry, self.settings.coordinator, self.cache, clock
        )
        self.merger = IntegrationMerger(workspace, validators, self.cache)
        self.store = store

        self.wave = 0
        self.pending: list[Task] = []
        self.completed: list[str] = []
        self.failed: dict[str, str] = {}
        self.waves: list[WaveReport] = []
        self.last_good_checkpoint: Optional[int] = None
        self._in_flight: list[Task] = []
        self._order: dict[str, int] = {}

    def submit(self, tasks: Iterable[Task]) -> None:
        known = {t.id for t in self.pending} | set(self.completed) | set(self.failed)
        for task in tasks:
            if task.id in known:
                raise ValueError(f"Duplicate task id: {task.id}")
            known.add(task.id)
            self._order.setdefault(task.id, len(self._order))
            self.pending.append(task)

    def plan(self) -> WavePlan:
        return self.assigner.assign(self.pending, self.completed)

    def run(self, tasks: Optional[Iterable[Task]] = None, max_waves: Optional[int] = None) -> RunReport:
        """Run waves until the pool is empty, nothing is eligible, or ``max_waves`` ran.

        Raises:
            RunAborted: On an ownership conflict, which a correct plan never produces
        """
        if tasks is not None:
            self.submit(tasks)

        ran = 0
        try:
            while self.pending and (max_waves is None or ran < max_waves):
                plan = self.plan()
                if plan.is_empty:
                    break
                self.waves.append(self._run_wave(plan.group_tasks(0)))
                ran += 1
        except ConflictViolation as e:
            log_with_context(
                logger, logging.CRITICAL, "Ownership conflict; aborting run", error=str(e),
                wave=self.wave, path=e.path, task_id=e.requester, holder=e.holder,
            )
            raise RunAborted(
                f"ownership conflict on {e.path}",
                [e.requester, e.holder],
                self.last_good_checkpoint,
                cause=e,
            ) from e

        report = self.report(paused=bool(self.pending) and max_waves is not None and ran >= max_waves)
        log_with_context(
            logger,
            logging.INFO,
            "Run finished",
            status=report.status,
            waves=len(report.waves),
            completed=len(report.completed),
            failed=len(report.failed),
            blocked=len(report.blocked),
        )
        return report

    def _run_wave(self, tasks: list[Task]) -> WaveReport:
        self.wave += 1
        wave = self.wave
        ids = {t.id for t in tasks}
        self.pending = [t for t in self.pending if t.id not in ids]
        self._in_flight = list(tasks)
        log_with_context(logger, logging.INFO, "Starting wave", wave=wave, tasks=[t.id for t in tasks])

        self.coordinator.begin_wave(wave)
        self.coordinator.run_group(tasks, self.worker)
        errors = dict(self.coordinator.errors)

        result = self.merger.merge(
            wave,
            {t.id: t for t in tasks},
            dict(self.coordinator.outputs),
            self.completed,
            failed=list(errors),
        )
        self.coordinator.close_wave(result.committed, result.rejected, result.penalized)

        self.completed.extend(result.committed)
        self.failed.update(self.coordinator.permanent_failures)
        requeued = set(self.coordinator.requeued)
        self.pending = sorted(
            self.pending + [t for t in tasks if t.id in requeued],
            key=lambda t: self._order[t.id],
        )
        self._in_flight = []

        version = self.checkpoint().version if self.store is not None else None
        return WaveReport(
            wave=wave,
            tasks=[t.id for t in tasks],
            outcome=result.outcome,
            committed=list(result.committed),
            requeued=[t.id for t in tasks if t.id in requeued],
            failed=list(self.coordinator.permanent_failures),
            timed_out=[tid for tid, e in errors.items() if isinstance(e, WorkerTimeout)],
            checkpoint_version=version,
        )

    def report(self, paused: bool = False) -> RunReport:
        blocked = dict(self.plan().blocked) if self.pending else {}
        for task in self.pending:
            upstream = [d for d in task.depends_on if d in self.failed]
            if upstream:
                blocked[task.id] = f"depends on failed {', '.join(upstream)}"

        if self.failed:
            status = "failed"
        elif paused:
            status = "paused"
        elif self.pending:
            status = "stalled"
        else:
            status = "completed"
        return RunReport(
            status=status,
            waves=list(self.waves),
            completed=list(self.completed),
            failed=dict(self.failed),
            blocked=blocked,
            last_checkpoint=self.last_good_checkpoint,
        )

    # Persistence

    def snapshot(self) -> EngineState:
        pending = sorted(self._in_flight + self.pending, key=lambda t: self._order[t.id])
        return EngineState(
            wave=self.wave,
            ownership=self.registry.records(),
            sessions=[s.model_copy() for s in self.coordinator.sessions.values()],
            cache_index=self.cache.index(),
            pending=pending,
            completed=list(self.completed),
            failed=list(self.failed),
            attempts=dict(self.coordinator.attempts),
            timeouts=dict(self.coordinator.timeouts),
        )

    def checkpoint(self) -> Checkpoint:
        if self.store is None:
            raise RuntimeError("No checkpoint store configured")
        checkpoint = self.store.save(self.snapshot())
        self.last_good_checkpoint = checkpoint.version
        return checkpoint

    def resume(
        self, version: Optional[int] = None, loader: Optional[Callable[[str], Any]] = None
    ) -> EngineState:
        """Restore from the newest usable checkpoint.

        Sessions that were still executing are treated as timed out and go
        back to the pool without charging the retry budget. Ownership is
        cleared and the cache is refilled from the checkpointed index.

        Raises:
            RunAborted: If no checkpoint validates
            CheckpointNotFound: If an explicit version is not on disk
        """
        if self.store is None:
            raise RuntimeError("No checkpoint store configured")
        try:
            checkpoint = self.store.restore_checkpoint(version)
        except NoUsableCheckpoint as e:
            raise RunAborted(str(e), [], None, cause=e) from e

        state = checkpoint.state
        timeout_limit = self.settings.coordinator.timeout_limit
        timeouts = dict(state.timeouts)
        failed = {task_id: "failed before checkpoint" for task_id in state.failed}
        pending = list(state.pending)
        pending_ids = {t.id for t in pending}

        for session in state.sessions:
            if session.task_id not in pending_ids:
                log_with_context(
                    logger, logging.WARNING, "Session task missing from checkpoint pool",
                    task_id=session.task_id, version=checkpoint.version,
                )
                continue
            if session.state not in INTERRUPTED_STATES:
                continue
            count = timeouts.get(session.task_id, 0) + 1
            timeouts[session.task_id] = count
            log_with_context(
                logger, logging.WARNING, "Interrupted session treated as timed out",
                task_id=session.task_id, session_id=session.id, timeouts=count,
            )
            if timeout_limit is not None and count > timeout_limit:
                failed[session.task_id] = str(
                    PermanentTaskFailure(session.task_id, "interrupted", count)
                )

        self.wave = state.wave
        self.completed = list(state.completed)
        self.failed = failed
        self.pending = [t for t in pending if t.id not in failed]
        self._in_flight = []
        self._order = {}
        for task_id in self.completed:
            self._order.setdefault(task_id, len(self._order))
        for task in pending:
            self._order.setdefault(task.id, len(self._order))

        self.registry.clear()
        self.coordinator.restore(state.wave, state.attempts, timeouts)
        self.cache.rehydrate(state.cache_index, loader)
        self.last_good_checkpoint = checkpoint.version
        log_with_context(
            logger,
            logging.INFO,
            "Resumed from checkpoint",
            version=checkpoint.version,
            wave=state.wave,
            pending=len(self.pending),
        )
        return state

    def status(self) -> dict[str, Any]:
        return {
            "wave": self.wave,
            "pending": [t.id for t in self.pending],
            "completed": list(self.completed),
            "failed": dict(self.failed),
            "sessions": self.coordinator.status_table(),
            "ownership": [r.model_dump(mode="json") for r in self.registry.records()],
            "last_checkpoint": self.last_good_checkpoint,
        }
