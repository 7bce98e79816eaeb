"""
Task output model for sprintlock.

Workers buffer their writes in a TaskOutput; nothing reaches the workspace
until the integration merger accepts the whole write set.
"""

from pydantic import BaseModel, field_validator

from ..utils.paths import normalize_path


class TaskOutput(BaseModel):
    """Buffered result of one task."""

    task_id: str
    writes: dict[str, str] = {}
    notes: list[str] = []

    @field_validator("writes")
    @classmethod
    def normalize_write_paths(cls, v: dict[str, str]) -> dict[str, str]:
        return {normalize_path(path): content for path, content in v.items()}
