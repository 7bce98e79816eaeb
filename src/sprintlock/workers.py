"""
Worker base classes.

Provides the interface the coordinator drives. Workers never talk to each
other; they report status through their context and buffer every write in
the TaskOutput they return.
"""

import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from loguru import logger

from .models import StatusReport, Task, TaskOutput


class WorkerContext:
    """Per-session handle a worker uses to talk to the coordinator."""

    def __init__(
        self,
        task: Task,
        session_id: str,
        channel: "queue.Queue[tuple[StatusReport, Optional[TaskOutput]]]",
        cache=None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.task = task
        self.session_id = session_id
        self.channel = channel
        self.cache = cache
        self.cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def report(
        self,
        state: str,
        progress: int = 0,
        message: str = "",
        output: Optional[TaskOutput] = None,
    ) -> None:
        report = StatusReport(
            task_id=self.task.id,
            session_id=self.session_id,
            state=state,
            progress_percent=progress,
            message=message,
        )
        self.channel.put((report, output))

    def heartbeat(self, progress: int = 0, message: str = "") -> None:
        """Signal liveness. Must be called at least once per heartbeat interval."""
        self.report("running", progress, message)

    def context(self, key: str) -> Any:
        """Look up a context record; None when absent or no cache is attached."""
        if self.cache is None:
            return None
        return self.cache.get(key).payload


class Worker(ABC):
    """Base class for all workers."""

    def __init__(self, name: str = "worker"):
        self.name = name
        logger.info(f"Initialized {self.name} worker")

    @abstractmethod
    def execute(self, task: Task, context: WorkerContext) -> TaskOutput:
        """
        Execute a task.

        Args:
            task: Task to execute
            context: Session context for heartbeats and context lookups

        Returns:
            Buffered output of the task
        """
        pass

    def run(self, task: Task, context: WorkerContext) -> TaskOutput:
        """Execute a task, reporting start and the terminal state."""
        context.report("running", 0, "started")
        try:
            output = self.execute(task, context)
            if output.task_id != task.id:
                raise ValueError(f"Output belongs to task {output.task_id}, expected {task.id}")
        except Exception as e:
            logger.error(f"{self.name} failed task {task.id}: {e}")
            context.report("failed", message=str(e) or e.__class__.__name__)
            raise

        if context.cancelled:
            logger.warning(f"{self.name} finished cancelled task {task.id}; output discarded")
        else:
            logger.debug(f"{self.name} completed task {task.id}")
        context.report("succeeded", 100, "completed", output=output)
        return output

    def get_status(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.__class__.__name__}

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"<{self.__class__.__name__}(name='{self.name}')>"


class FunctionWorker(Worker):
    """Adapts a plain callable ``fn(task, context)``.

    The callable may return a TaskOutput, a ``{path: content}`` mapping, or
    None for a task that writes nothing.
    """

    def __init__(self, fn: Callable[[Task, WorkerContext], Any], name: Optional[str] = None):
        super().__init__(name or getattr(fn, "__name__", "function-worker"))
        self.fn = fn

    def execute(self, task: Task, context: WorkerContext) -> TaskOutput:
        result = self.fn(task, context)
        if isinstance(result, TaskOutput):
            return result
        return TaskOutput(task_id=task.id, writes=dict(result or {}))
