"""
Checkpoint models for sprintlock.

This module provides the EngineState model (the full coordination state) and
the Checkpoint model (a versioned, checksummed snapshot of it).
"""

import hashlib
import json
from typing import Any

from pydantic import BaseModel, Field

from .context_item import CacheIndexEntry
from .ownership_record import OwnershipRecord
from .task import Task
from .worker_session import WorkerSession


class EngineState(BaseModel):
    """Everything needed to resume coordination after an interruption."""

    wave: int = Field(default=0, ge=0)
    ownership: list[OwnershipRecord] = []
    sessions: list[WorkerSession] = []
    cache_index: list[CacheIndexEntry] = []
    pending: list[Task] = []
    completed: list[str] = []
    failed: list[str] = []
    attempts: dict[str, int] = {}
    timeouts: dict[str, int] = {}


class Checkpoint(EngineState):
    """Persisted checkpoint record."""

    version: int = Field(..., ge=1)
    timestamp: str
    checksum: str = ""

    @classmethod
    def from_state(cls, version: int, timestamp: str, state: EngineState) -> "Checkpoint":
        checkpoint = cls(version=version, timestamp=timestamp, **state.model_dump())
        checkpoint.checksum = compute_checksum(checkpoint.body())
        return checkpoint

    def body(self) -> dict[str, Any]:
        """The record without its checksum, in JSON-compatible form."""
        return self.model_dump(mode="json", exclude={"checksum"})

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @property
    def state(self) -> EngineState:
        return EngineState.model_validate(
            self.model_dump(exclude={"version", "timestamp", "checksum"})
        )


def compute_checksum(body: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of a record body."""
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
