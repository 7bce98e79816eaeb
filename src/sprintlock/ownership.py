"""
Ownership assignment and the ownership registry.

The assigner colours the conflict graph greedily: tasks with the most
conflicts are placed first, each into the lowest group that has no edge to a
task already there and that comes after the groups of its dependencies and
of the writers whose output it reads. Groups run one after another; tasks
inside a group run concurrently.

The registry is the single synchronization point for live ownership. Every
grant and revocation goes through its lock.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .conflicts import ConflictAnalyzer, ConflictGraph
from .errors import ConflictViolation
from .models import OwnershipRecord, Task
from .utils.jsonl_logger import get_logger, log_with_context
from .utils.paths import paths_overlap

logger = get_logger("ownership")

TIE_BREAK_POLICIES = ("submission", "effort")


@dataclass
class WavePlan:
    """Ordered concurrency groups for a batch of tasks."""

    groups: list[list[str]]
    ownership: list[list[OwnershipRecord]]
    blocked: dict[str, str]
    graph: ConflictGraph
    tasks: dict[str, Task] = field(default_factory=dict)
    color: dict[str, int] = field(default_factory=dict)

    def group_of(self, task_id: str) -> Optional[int]:
        return self.color.get(task_id)

    def group_tasks(self, index: int) -> list[Task]:
        return [self.tasks[task_id] for task_id in self.groups[index]]

    @property
    def is_empty(self) -> bool:
        return not self.groups

    def summary(self) -> dict[str, object]:
        return {
            "groups": [list(g) for g in self.groups],
            "blocked": dict(self.blocked),
            "edges": [e.model_dump(mode="json") for e in self.graph.edges],
            "degree": dict(self.graph.degree),
            "ownership": [
                [r.model_dump(mode="json") for r in records] for records in self.ownership
            ],
        }


def group_ownership(tasks: Iterable[Task]) -> list[OwnershipRecord]:
    """Ownership records for tasks that run concurrently.

    Written paths are exclusive; paths only read are shared.
    """
    exclusive: dict[str, str] = {}
    shared: dict[str, set[str]] = {}
    for task in tasks:
        for path in task.writes:
            exclusive[path] = task.id
        for path in task.read_only_paths:
            shared.setdefault(path, set()).add(task.id)

    records = [OwnershipRecord(path=p, exclusive_owner=owner) for p, owner in exclusive.items()]
    records.extend(
        OwnershipRecord(path=p, shared_readers=sorted(readers))
        for p, readers in shared.items()
        if p not in exclusive
    )
    return sorted(records, key=lambda r: r.path)


class OwnershipAssigner:
    """Partitions tasks into conflict-free concurrency groups."""

    def __init__(self, analyzer: Optional[ConflictAnalyzer] = None, tie_break: str = "submission"):
        if tie_break not in TIE_BREAK_POLICIES:
            raise ValueError(f"Tie-break policy must be one of {list(TIE_BREAK_POLICIES)}")
        self.analyzer = analyzer or ConflictAnalyzer()
        self.tie_break = tie_break

    def assign(self, tasks: list[Task], completed: Iterable[str] = ()) -> WavePlan:
        """Plan a batch of tasks.

        Args:
            tasks: Tasks in submission order
            completed: Ids of tasks already committed in earlier waves

        Returns:
            WavePlan with ordered groups, per-group ownership and blocked tasks
        """
        completed = set(completed)
        by_id = {t.id: t for t in tasks}
        submission = {t.id: i for i, t in enumerate(tasks)}
        blocked = self._find_blocked(tasks, by_id, completed)

        candidates = [t for t in tasks if t.id not in blocked]
        graph = self.analyzer.analyze(candidates)
        candidate_ids = {t.id for t in candidates}
        dependencies = {
            t.id: {d for d in t.depends_on if d in candidate_ids} for t in candidates
        }

        order = sorted(candidates, key=lambda t: self._priority(t, graph, submission))
        color: dict[str, int] = {}
        groups: list[list[str]] = []
        unplaced = list(order)

        while unplaced:
            placed = set(color)
            chosen = next(
                (
                    t
                    for t in unplaced
                    if dependencies[t.id] <= placed and graph.writers_before(t.id) <= placed
                ),
                None,
            )
            if chosen is None:
                # Read-after-write cycle: place the highest priority task whose
                # dependencies are satisfied.
                chosen = next((t for t in unplaced if dependencies[t.id] <= placed), None)
                if chosen is not None:
                    log_with_context(
                        logger,
                        logging.DEBUG,
                        "Breaking read-after-write cycle",
                        task_id=chosen.id,
                        waiting_on=sorted(graph.writers_before(chosen.id) - placed),
                    )
            if chosen is None:
                for t in unplaced:
                    blocked[t.id] = "dependency cycle"
                break

            predecessors = (dependencies[chosen.id] | graph.writers_before(chosen.id)) & placed
            index = max((color[p] for p in predecessors), default=-1) + 1
            while index < len(groups) and any(
                graph.conflicts(chosen.id, other) for other in groups[index]
            ):
                index += 1
            if index == len(groups):
                groups.append([])
            groups[index].append(chosen.id)
            color[chosen.id] = index
            unplaced.remove(chosen)

        # Keep submission order inside each group.
        groups = [sorted(g, key=submission.__getitem__) for g in groups if g]
        color = {task_id: i for i, g in enumerate(groups) for task_id in g}
        ownership = [group_ownership(by_id[task_id] for task_id in g) for g in groups]

        log_with_context(
            logger,
            logging.DEBUG,
            "Planned batch",
            tasks=len(tasks),
            groups=len(groups),
            edges=len(graph.edges),
            blocked=len(blocked),
        )
        return WavePlan(
            groups=groups,
            ownership=ownership,
            blocked=blocked,
            graph=graph,
            tasks={t.id: t for t in candidates},
            color=color,
        )

    def _priority(self, task: Task, graph: ConflictGraph, submission: dict[str, int]) -> tuple:
        if self.tie_break == "effort":
            return (-graph.degree[task.id], -task.effort, submission[task.id])
        return (-graph.degree[task.id], submission[task.id])

    @staticmethod
    def _find_blocked(
        tasks: list[Task], by_id: dict[str, Task], completed: set[str]
    ) -> dict[str, str]:
        blocked: dict[str, str] = {}
        for task in tasks:
            missing = [d for d in task.depends_on if d not in completed and d not in by_id]
            if missing:
                blocked[task.id] = f"waiting on {', '.join(missing)}"

        changed = True
        while changed:
            changed = False
            for task in tasks:
                if task.id in blocked:
                    continue
                upstream = [d for d in task.depends_on if d in blocked]
                if upstream:
                    blocked[task.id] = f"depends on blocked {', '.join(upstream)}"
                    changed = True
        return blocked


class OwnershipRegistry:
    """Live ownership of paths, indexed by path.

    A path has at most one exclusive owner, and exclusive and shared-read
    holds on overlapping paths never coexist.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._exclusive: dict[str, str] = {}
        self._shared: dict[str, set[str]] = {}

    def acquire(self, task: Task) -> list[OwnershipRecord]:
        """Grant every path of a task atomically.

        Raises:
            ConflictViolation: If any path overlaps another task's hold
        """
        with self._lock:
            for path in task.writes:
                self._check(path, task.id, exclusive=True)
            for path in task.read_only_paths:
                self._check(path, task.id, exclusive=False)

            for path in task.writes:
                self._exclusive[path] = task.id
            for path in task.read_only_paths:
                self._shared.setdefault(path, set()).add(task.id)
            return [r for r in self._snapshot() if task.id in r.holders]

    def _check(self, path: str, requester: str, exclusive: bool) -> None:
        for held_path, owner in self._exclusive.items():
            if owner != requester and paths_overlap(path, held_path):
                raise ConflictViolation(path, owner, requester, held_path)
        if not exclusive:
            return
        for held_path, readers in self._shared.items():
            others = sorted(readers - {requester})
            if others and paths_overlap(path, held_path):
                raise ConflictViolation(path, others[0], requester, held_path)

    def release(self, task_id: str) -> list[str]:
        """Revoke every hold of a task. Returns the released paths."""
        with self._lock:
            released = [p for p, owner in self._exclusive.items() if owner == task_id]
            for path in released:
                del self._exclusive[path]
            for path in list(self._shared):
                readers = self._shared[path]
                if task_id in readers:
                    readers.discard(task_id)
                    released.append(path)
                    if not readers:
                        del self._shared[path]
            return sorted(released)

    def owner_of(self, path: str) -> Optional[str]:
        """Exclusive owner of any path overlapping ``path``."""
        with self._lock:
            for held_path, owner in self._exclusive.items():
                if paths_overlap(path, held_path):
                    return owner
            return None

    def blockers(self, task: Task) -> list[str]:
        """Tasks whose exclusive holds would block ``task``."""
        with self._lock:
            found = {
                owner
                for p in task.paths
                for held_path, owner in self._exclusive.items()
                if owner != task.id and paths_overlap(p, held_path)
            }
            return sorted(found)

    def held_by(self, task_id: str) -> list[str]:
        with self._lock:
            return sorted(r.path for r in self._snapshot() if task_id in r.holders)

    def records(self) -> list[OwnershipRecord]:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> list[OwnershipRecord]:
        records = [OwnershipRecord(path=p, exclusive_owner=o) for p, o in self._exclusive.items()]
        records.extend(
            OwnershipRecord(path=p, shared_readers=sorted(r)) for p, r in self._shared.items()
        )
        return sorted(records, key=lambda r: r.path)

    def restore(self, records: Iterable[OwnershipRecord]) -> None:
        """Replace the registry contents, e.g. from a checkpoint."""
        with self._lock:
            self._exclusive.clear()
            self._shared.clear()
            for record in records:
                if record.exclusive_owner:
                    self._exclusive[record.path] = record.exclusive_owner
                else:
                    self._shared[record.path] = set(record.shared_readers)

    def clear(self) -> None:
        with self._lock:
            self._exclusive.clear()
            self._shared.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._exclusive) + len(self._shared)
