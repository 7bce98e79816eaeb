"""
Task model for sprintlock.

This module provides the Task model: the submission record a planner hands to
the engine, declaring which paths the task reads and writes.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.paths import normalize_path


def _unique(values: tuple[str, ...]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return tuple(seen)


class Task(BaseModel):
    """Unit of work with a declared file touch-set. Immutable once submitted."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    reads: tuple[str, ...] = ()
    writes: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    effort: float = Field(default=1.0, ge=0)

    @field_validator("reads", "writes")
    @classmethod
    def normalize_paths(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return _unique(tuple(normalize_path(p) for p in v))

    @field_validator("depends_on")
    @classmethod
    def dedupe_dependencies(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return _unique(v)

    @model_validator(mode="after")
    def check_self_dependency(self):
        if self.id in self.depends_on:
            raise ValueError(f"Task {self.id} cannot depend on itself")
        return self

    @property
    def paths(self) -> tuple[str, ...]:
        """Every path the task touches, writes first."""
        return _unique(self.writes + self.reads)

    @property
    def read_only_paths(self) -> tuple[str, ...]:
        """Paths the task reads without also writing them."""
        return tuple(p for p in self.reads if p not in self.writes)
