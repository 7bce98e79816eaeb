"""
Data models for sprintlock.

This module provides the typed records exchanged between the engine's
components and persisted in checkpoints.
"""

from .checkpoint import Checkpoint, EngineState, compute_checksum
from .conflict_edge import ConflictEdge, ConflictKind
from .context_item import (
    TIER_ORDER,
    CacheEntry,
    CacheIndexEntry,
    CacheLookup,
    ContextItem,
    Priority,
    Tier,
)
from .ownership_record import OwnershipRecord
from .status_report import StatusReport
from .task import Task
from .task_output import TaskOutput
from .worker_session import WAVE_TERMINAL, SessionState, WorkerSession

__all__ = [
    "Checkpoint",
    "EngineState",
    "compute_checksum",
    "ConflictEdge",
    "ConflictKind",
    "TIER_ORDER",
    "CacheEntry",
    "CacheIndexEntry",
    "CacheLookup",
    "ContextItem",
    "Priority",
    "Tier",
    "OwnershipRecord",
    "StatusReport",
    "Task",
    "TaskOutput",
    "WAVE_TERMINAL",
    "SessionState",
    "WorkerSession",
]
