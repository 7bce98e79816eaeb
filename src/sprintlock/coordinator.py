"""
Worker coordinator.

Drives worker sessions through their state machine:

    assigned -> running -> {succeeded | failed | timed-out} -> {reassigned | finalized}

Workers run in one thread pool of ``max_workers`` threads that lives as long
as the coordinator, and talk to the coordinator only through the status
channel. The thread that calls ``run_group`` is the single mutator of sessions
and ownership; workers never touch either.

A timed-out worker is abandoned, not killed: it keeps its thread until it
returns, and no new task is started in that slot until then.
"""

import itertools
import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional

from .config.settings import CoordinatorSettings
from .errors import PermanentTaskFailure, SprintlockError, WorkerFailure, WorkerTimeout
from .models import Priority, SessionState, StatusReport, Task, TaskOutput, WorkerSession
from .ownership import OwnershipRegistry
from .utils.jsonl_logger import get_logger, log_with_context
from .workers import Worker, WorkerContext

logger = get_logger("coordinator")


class WorkerCoordinator:
    """Dispatches tasks to workers and tracks their sessions for one wave at a time."""

    def __init__(
        self,
        registry: OwnershipRegistry,
        settings: Optional[CoordinatorSettings] = None,
        cache=None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.settings = settings or CoordinatorSettings()
        self.cache = cache
        self.clock = clock
        self.channel: "queue.Queue[tuple[StatusReport, Optional[TaskOutput]]]" = queue.Queue()

        self.wave = 0
        self.sessions: dict[str, WorkerSession] = {}
        self.history: list[WorkerSession] = []
        self.attempts: dict[str, int] = {}
        self.timeouts: dict[str, int] = {}
        self.outputs: dict[str, TaskOutput] = {}
        self.requeued: list[str] = []
        self.permanent_failures: dict[str, str] = {}
        self.errors: dict[str, SprintlockError] = {}

        self._by_task: dict[str, str] = {}
        self._cancel: dict[str, threading.Event] = {}
        self._seq = itertools.count(1)
        self._pool: Optional[ThreadPoolExecutor] = None
        # session id -> (task id, future) of timed-out workers still executing
        self._abandoned: dict[str, tuple[str, Future]] = {}

    # Wave lifecycle

    def begin_wave(self, wave: int) -> None:
        if self.sessions:
            raise RuntimeError(f"Wave {self.wave} still has open sessions")
        self.wave = wave
        self.outputs = {}
        self.requeued = []
        self.permanent_failures = {}
        self.errors = {}

    def restore(
        self, wave: int, attempts: dict[str, int], timeouts: Optional[dict[str, int]] = None
    ) -> None:
        """Reset to a checkpointed position. Open sessions are discarded."""
        for event in self._cancel.values():
            event.set()
        self.sessions.clear()
        self._by_task.clear()
        self._cancel.clear()
        self.wave = wave
        self.attempts = dict(attempts)
        self.timeouts = dict(timeouts or {})

    def dispatch(self, task: Task) -> WorkerSession:
        """Grant ownership and open an ``assigned`` session.

        Raises:
            ConflictViolation: If the task's paths overlap live ownership
        """
        if task.id in self._by_task:
            raise ValueError(f"Task {task.id} already has an open session")
        self.registry.acquire(task)

        session = WorkerSession(
            id=f"{task.id}#{next(self._seq)}",
            task_id=task.id,
            retry_count=self.attempts.get(task.id, 0),
        )
        self.sessions[session.id] = session
        self._by_task[task.id] = session.id
        self._cancel[session.id] = threading.Event()
        self._mirror(session)
        log_with_context(
            logger, logging.DEBUG, "Dispatched task", wave=self.wave, task_id=task.id, session_id=session.id
        )
        return session

    def start(self, session_id: str) -> WorkerSession:
        session = self.sessions[session_id]
        session.transition(SessionState.RUNNING)
        now = self.clock()
        session.started_at = now
        session.last_heartbeat = now
        self._mirror(session)
        return session

    def handle_report(self, report: StatusReport, output: Optional[TaskOutput] = None) -> bool:
        """Apply a status report. Returns False when the report was ignored."""
        session = self._session_for(report)
        if session is None or session.is_wave_terminal:
            log_with_context(
                logger,
                logging.DEBUG,
                "Ignoring late status report",
                task_id=report.task_id,
                session_id=report.session_id,
                state=report.state,
            )
            return False

        if session.state == SessionState.ASSIGNED:
            self.start(session.id)
        session.last_heartbeat = self.clock()
        session.progress_percent = report.progress_percent
        session.message = report.message

        if report.state == "succeeded":
            session.transition(SessionState.SUCCEEDED)
            self.outputs[session.task_id] = output or TaskOutput(task_id=session.task_id)
            self._mirror(session)
            log_with_context(
                logger, logging.INFO, "Task succeeded", wave=self.wave, task_id=session.task_id
            )
        elif report.state == "failed":
            session.transition(SessionState.FAILED)
            self._revoke(session, WorkerFailure(session.task_id, report.message or "unknown error"))
        return True

    def check_timeouts(self, now: Optional[float] = None) -> list[str]:
        """Time out running sessions that stopped heartbeating. Returns their task ids.

        Timeouts are requeued without charging the retry budget. Only when
        ``timeout_limit`` is set does a task that keeps hanging fail for good.
        """
        now = self.clock() if now is None else now
        timed_out = []
        for session in list(self.sessions.values()):
            if session.state != SessionState.RUNNING:
                continue
            silence = now - (session.last_heartbeat or session.started_at or now)
            if silence > self.settings.heartbeat_timeout:
                session.transition(SessionState.TIMED_OUT)
                self._cancel[session.id].set()
                error = WorkerTimeout(session.task_id, silence)
                self.registry.release(session.task_id)
                self.errors[session.task_id] = error
                self._count_timeout(session.task_id, str(error))
                self._mirror(session)
                timed_out.append(session.task_id)
        return timed_out

    def close_wave(
        self,
        committed: Iterable[str] = (),
        rejected: Optional[dict[str, str]] = None,
        penalized: Iterable[str] = (),
    ) -> list[WorkerSession]:
        """Finalize or reassign every session of the wave and release its ownership.

        Args:
            committed: Succeeded tasks the merger committed
            rejected: Succeeded tasks the merger sent back, with reasons
            penalized: Rejected tasks whose own output failed validation; these
                count against the retry budget
        """
        committed = set(committed)
        rejected = rejected or {}
        penalized = set(penalized)

        active = [s for s in self.sessions.values() if not s.is_wave_terminal]
        if active:
            raise RuntimeError(f"Sessions still active: {', '.join(s.id for s in active)}")

        closed = []
        for session in list(self.sessions.values()):
            task_id = session.task_id
            if session.state == SessionState.SUCCEEDED and task_id not in committed:
                reason = rejected.get(task_id, "not committed")
                self.outputs.pop(task_id, None)
                if task_id in penalized:
                    self._count_failure(task_id, reason)
                else:
                    self.requeued.append(task_id)

            if session.state == SessionState.SUCCEEDED and task_id in committed:
                session.transition(SessionState.FINALIZED)
            elif task_id in self.permanent_failures:
                session.transition(SessionState.FINALIZED)
            else:
                session.transition(SessionState.REASSIGNED)

            self.registry.release(task_id)
            self._mirror(session)
            self.history.append(session)
            closed.append(session)

        self.sessions.clear()
        self._by_task.clear()
        self._cancel.clear()
        return closed

    # Thread pool

    def run_group(self, tasks: list[Task], worker: Worker) -> None:
        """Run a conflict-free group, at most ``max_workers`` tasks at a time."""
        size = self.settings.max_workers
        for start in range(0, len(tasks), size):
            self._run_batch(tasks[start : start + size], worker)

    def _run_batch(self, batch: list[Task], worker: Worker) -> None:
        waiting = list(batch)
        futures: dict[str, Future] = {}
        task_ids: dict[str, str] = {}
        try:
            while waiting or not all(self.sessions[sid].is_wave_terminal for sid in futures):
                while waiting and self._busy_slots(futures) < self.settings.max_workers:
                    task = self._next_startable(waiting)
                    if task is None:
                        break
                    waiting.remove(task)
                    session = self.dispatch(task)
                    context = WorkerContext(
                        task, session.id, self.channel, self.cache, self._cancel[session.id]
                    )
                    self.start(session.id)
                    futures[session.id] = self.pool.submit(worker.run, task, context)
                    task_ids[session.id] = task.id

                self._drain(timeout=self.settings.poll_interval)
                self._reap_exited(futures)
                self.check_timeouts()
        except BaseException:
            for sid in futures:
                self._cancel[sid].set()
            raise
        finally:
            for sid, future in futures.items():
                if not future.done():
                    self._abandoned[sid] = (task_ids[sid], future)

    @property
    def pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self.settings.max_workers, thread_name_prefix="sprintlock-worker"
            )
        return self._pool

    def shutdown(self) -> None:
        """Cancel every live worker and stop the pool without joining it."""
        for event in self._cancel.values():
            event.set()
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

    def _busy_slots(self, futures: dict[str, Future]) -> int:
        """Threads held by this batch plus abandoned workers that have not returned."""
        for sid in [sid for sid, (_, future) in self._abandoned.items() if future.done()]:
            del self._abandoned[sid]
        live = sum(1 for future in futures.values() if not future.done())
        return live + len(self._abandoned)

    def _next_startable(self, waiting: list[Task]) -> Optional[Task]:
        """First waiting task with no abandoned run of itself still executing."""
        hung = {task_id for task_id, _ in self._abandoned.values()}
        for task in waiting:
            if task.id not in hung:
                return task
        return None

    def _drain(self, timeout: Optional[float] = None) -> None:
        try:
            report, output = self.channel.get(timeout=timeout) if timeout else self.channel.get_nowait()
        except queue.Empty:
            return
        self.handle_report(report, output)
        while True:
            try:
                report, output = self.channel.get_nowait()
            except queue.Empty:
                return
            self.handle_report(report, output)

    def _reap_exited(self, futures: dict[str, Future]) -> None:
        done = [sid for sid, future in futures.items() if future.done()]
        if not done:
            return
        self._drain()
        for sid in done:
            session = self.sessions[sid]
            if session.is_wave_terminal:
                continue
            exc = futures[sid].exception()
            message = str(exc) if exc else "worker exited without a terminal report"
            self.handle_report(
                StatusReport(task_id=session.task_id, session_id=sid, state="failed", message=message)
            )

    # Internals

    def _session_for(self, report: StatusReport) -> Optional[WorkerSession]:
        if report.session_id:
            return self.sessions.get(report.session_id)
        session_id = self._by_task.get(report.task_id)
        return self.sessions.get(session_id) if session_id else None

    def _revoke(self, session: WorkerSession, error: SprintlockError) -> None:
        self.registry.release(session.task_id)
        self.errors[session.task_id] = error
        self._count_failure(session.task_id, str(error))
        self._mirror(session)

    def _count_failure(self, task_id: str, reason: str) -> bool:
        """Charge one attempt; returns True when the task is now permanently failed."""
        attempts = self.attempts.get(task_id, 0) + 1
        self.attempts[task_id] = attempts
        if attempts > self.settings.retry_limit:
            self._give_up(task_id, PermanentTaskFailure(task_id, reason, attempts))
            return True

        self._requeue(task_id, reason, attempts=attempts)
        return False

    def _count_timeout(self, task_id: str, reason: str) -> bool:
        """Record one timeout; only ``timeout_limit`` turns timeouts permanent."""
        count = self.timeouts.get(task_id, 0) + 1
        self.timeouts[task_id] = count
        limit = self.settings.timeout_limit
        if limit is not None and count > limit:
            self._give_up(task_id, PermanentTaskFailure(task_id, reason, count))
            return True

        self._requeue(task_id, reason, timeouts=count)
        return False

    def _give_up(self, task_id: str, failure: PermanentTaskFailure) -> None:
        self.permanent_failures[task_id] = str(failure)
        log_with_context(
            logger, logging.ERROR, "Task permanently failed", error=str(failure),
            wave=self.wave, task_id=task_id, attempts=failure.attempts,
        )

    def _requeue(self, task_id: str, reason: str, **counts: int) -> None:
        self.requeued.append(task_id)
        log_with_context(
            logger, logging.WARNING, "Task requeued for next wave", error=reason,
            wave=self.wave, task_id=task_id, **counts,
        )

    def _mirror(self, session: WorkerSession) -> None:
        if self.cache is None:
            return
        self.cache.set(
            f"task-state:{session.task_id}",
            {
                "state": session.state.value,
                "session_id": session.id,
                "wave": self.wave,
                "progress_percent": session.progress_percent,
            },
            Priority.OPTIONAL,
        )

    # Queries

    def active_sessions(self) -> list[WorkerSession]:
        return [s for s in self.sessions.values() if not s.is_wave_terminal]

    def session_for_task(self, task_id: str) -> Optional[WorkerSession]:
        session_id = self._by_task.get(task_id)
        return self.sessions.get(session_id) if session_id else None

    def status_table(self) -> list[dict[str, Any]]:
        """Latest session of every task seen so far."""
        latest: dict[str, WorkerSession] = {}
        for session in itertools.chain(self.history, self.sessions.values()):
            latest[session.task_id] = session
        return [
            {
                "task_id": task_id,
                "session_id": session.id,
                "state": session.state.value,
                "progress_percent": session.progress_percent,
                "message": session.message,
                "retry_count": session.retry_count,
                "last_heartbeat": session.last_heartbeat,
                "paths": self.registry.held_by(task_id),
            }
            for task_id, session in latest.items()
        ]
