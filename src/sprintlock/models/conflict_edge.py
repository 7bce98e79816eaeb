"""
Conflict edge model for sprintlock.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ConflictKind(str, Enum):
    WRITE_WRITE = "write-write"
    WRITE_READ = "write-read"
    READ_READ = "read-read"


class ConflictEdge(BaseModel):
    """Undirected conflict between two tasks of one wave.

    ``first`` is the task submitted earlier. For write-read edges ``writer``
    names the task that writes the shared path.
    """

    model_config = ConfigDict(frozen=True)

    first: str
    second: str
    kind: ConflictKind
    paths: tuple[str, ...]
    writer: str = ""

    def other(self, task_id: str) -> str:
        return self.second if task_id == self.first else self.first

    def touches(self, task_id: str) -> bool:
        return task_id in (self.first, self.second)
