"""
sprintlock: parallel work coordination and context persistence.

Plans tasks that declare the files they read and write into conflict-free
waves, runs each wave on a bounded worker pool, merges the results, and
checkpoints the coordination state so an interrupted run can resume.
"""

__version__ = "0.1.0"

from .checkpoint_store import CheckpointStore
from .conflicts import ConflictAnalyzer, ConflictGraph
from .context_cache import ContextCacheManager, estimate_tokens
from .coordinator import WorkerCoordinator
from .engine import Engine, RunReport, WaveReport
from .merger import DirectoryWorkspace, InMemoryWorkspace, IntegrationMerger, WaveOutcome
from .ownership import OwnershipAssigner, OwnershipRegistry, WavePlan
from .workers import FunctionWorker, Worker, WorkerContext

__all__ = [
    "__version__",
    "CheckpointStore",
    "ConflictAnalyzer",
    "ConflictGraph",
    "ContextCacheManager",
    "estimate_tokens",
    "WorkerCoordinator",
    "Engine",
    "RunReport",
    "WaveReport",
    "DirectoryWorkspace",
    "InMemoryWorkspace",
    "IntegrationMerger",
    "WaveOutcome",
    "OwnershipAssigner",
    "OwnershipRegistry",
    "WavePlan",
    "FunctionWorker",
    "Worker",
    "WorkerContext",
]
