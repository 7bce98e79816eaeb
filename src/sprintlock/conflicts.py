"""
Conflict analysis for one wave of tasks.

Every unordered pair of tasks is compared on its declared paths. Overlapping
writes give a write-write edge, a write overlapping a read gives a write-read
edge; read-read overlaps are not conflicts and are dropped. The result is a
deterministic, undirected conflict graph plus the read-after-write precedence
the ownership assigner needs to order readers behind writers.
"""

from dataclasses import dataclass, field
from fnmatch import fnmatch
from itertools import combinations
from typing import Iterable, Optional

from .models import ConflictEdge, ConflictKind, Task
from .utils.paths import paths_overlap

DEFAULT_CRITICAL_PATHS = ("package.json", "pyproject.toml", "config/*")


def _overlapping(left: Iterable[str], right: Iterable[str]) -> list[str]:
    right = list(right)
    found: set[str] = set()
    for p in left:
        for q in right:
            if paths_overlap(p, q):
                found.add(p)
                found.add(q)
    return sorted(found)


@dataclass
class ConflictGraph:
    """Undirected conflict graph of one wave."""

    tasks: list[Task]
    edges: list[ConflictEdge]
    degree: dict[str, int]
    precedence: dict[str, set[str]]
    shared_write_paths: dict[str, list[str]] = field(default_factory=dict)
    shared_read_paths: dict[str, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._adjacency: dict[str, set[str]] = {t.id: set() for t in self.tasks}
        for edge in self.edges:
            self._adjacency[edge.first].add(edge.second)
            self._adjacency[edge.second].add(edge.first)

    def neighbors(self, task_id: str) -> set[str]:
        return set(self._adjacency.get(task_id, ()))

    def conflicts(self, first: str, second: str) -> bool:
        return second in self._adjacency.get(first, ())

    def edges_of(self, task_id: str) -> list[ConflictEdge]:
        return [e for e in self.edges if e.touches(task_id)]

    def isolated(self) -> list[str]:
        """Tasks with no conflicts, in submission order."""
        return [t.id for t in self.tasks if self.degree[t.id] == 0]

    def writers_before(self, task_id: str) -> set[str]:
        """Tasks that write a path this task only reads."""
        return set(self.precedence.get(task_id, ()))


class ConflictAnalyzer:
    """Builds conflict graphs and rates conflict severity."""

    def __init__(self, critical_paths: Optional[Iterable[str]] = None):
        self.critical_paths = tuple(
            critical_paths if critical_paths is not None else DEFAULT_CRITICAL_PATHS
        )

    def analyze(self, tasks: list[Task]) -> ConflictGraph:
        """Build the conflict graph for a batch of tasks.

        Raises:
            ValueError: If two tasks share an id
        """
        seen: set[str] = set()
        for task in tasks:
            if task.id in seen:
                raise ValueError(f"Duplicate task id in wave: {task.id}")
            seen.add(task.id)

        edges: list[ConflictEdge] = []
        degree = {t.id: 0 for t in tasks}
        precedence: dict[str, set[str]] = {t.id: set() for t in tasks}

        for first, second in combinations(tasks, 2):
            write_write = _overlapping(first.writes, second.writes)
            first_then_second = _overlapping(first.writes, second.read_only_paths)
            second_then_first = _overlapping(second.writes, first.read_only_paths)

            if first_then_second:
                precedence[second.id].add(first.id)
            if second_then_first:
                precedence[first.id].add(second.id)

            if write_write:
                kind = ConflictKind.WRITE_WRITE
                paths = write_write
                writer = ""
            elif first_then_second or second_then_first:
                kind = ConflictKind.WRITE_READ
                paths = sorted(set(first_then_second) | set(second_then_first))
                if first_then_second and not second_then_first:
                    writer = first.id
                elif second_then_first and not first_then_second:
                    writer = second.id
                else:
                    writer = ""
            else:
                continue

            edges.append(
                ConflictEdge(
                    first=first.id, second=second.id, kind=kind, paths=tuple(paths), writer=writer
                )
            )
            degree[first.id] += 1
            degree[second.id] += 1

        shared_write, shared_read = self._classify_paths(tasks)
        return ConflictGraph(
            tasks=list(tasks),
            edges=edges,
            degree=degree,
            precedence=precedence,
            shared_write_paths=shared_write,
            shared_read_paths=shared_read,
        )

    @staticmethod
    def _classify_paths(tasks: list[Task]) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
        all_paths = sorted({p for t in tasks for p in t.paths})
        shared_write: dict[str, list[str]] = {}
        shared_read: dict[str, list[str]] = {}
        for path in all_paths:
            touching = [t for t in tasks if any(paths_overlap(path, p) for p in t.paths)]
            if len(touching) < 2:
                continue
            ids = [t.id for t in touching]
            if any(any(paths_overlap(path, p) for p in t.writes) for t in touching):
                shared_write[path] = ids
            else:
                shared_read[path] = ids
        return shared_write, shared_read

    def severity(self, path: str, touching: int) -> str:
        """Rate a conflicting path: critical, high or medium."""
        name = path.rstrip("/").rsplit("/", 1)[-1]
        for pattern in self.critical_paths:
            if fnmatch(path, pattern) or fnmatch(name, pattern):
                return "critical"
        if touching > 2:
            return "high"
        return "medium"

    def conflict_report(self, graph: ConflictGraph) -> list[dict[str, object]]:
        """Per-path summary of shared-write paths with their severity."""
        return [
            {"path": path, "tasks": ids, "severity": self.severity(path, len(ids))}
            for path, ids in sorted(graph.shared_write_paths.items())
        ]
