"""
sprintlock API service.

Exposes planning, the context cache and the checkpoint store over HTTP.
Build the application with ``create_app``; for uvicorn use
``sprintlock.api.main:create_app --factory``.
"""

import datetime
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .. import __version__
from ..checkpoint_store import CheckpointStore
from ..config import Settings, get_config
from ..conflicts import ConflictAnalyzer
from ..context_cache import ContextCacheManager
from ..models import CacheLookup, Priority, Task, Tier
from ..ownership import OwnershipAssigner
from ..utils.jsonl_logger import get_logger
from .problem_details import setup_problem_detail_handlers
from .request_id_middleware import RequestIDMiddleware

SERVICE_NAME = "sprintlock-api"

logger = get_logger("api")


# Request/Response models
class PlanRequest(BaseModel):
    tasks: list[Task]
    completed: list[str] = []


class CacheSetRequest(BaseModel):
    payload: Any = None
    priority: Priority = Priority.OPTIONAL
    size: Optional[int] = Field(default=None, ge=0)
    tier: Optional[Tier] = None


class DemoteRequest(BaseModel):
    priority: Priority = Priority.IMPORTANT


class SnapshotRequest(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


def create_app(
    settings: Optional[Settings] = None,
    cache: Optional[ContextCacheManager] = None,
    store: Optional[CheckpointStore] = None,
) -> FastAPI:
    """Build the API around a cache and a checkpoint store."""
    settings = settings or get_config()
    cache = cache if cache is not None else ContextCacheManager(settings.cache)
    store = store or CheckpointStore.from_settings(settings.checkpoint)
    analyzer = ConflictAnalyzer(settings.coordinator.critical_paths)
    assigner = OwnershipAssigner(analyzer, settings.coordinator.tie_break)

    app = FastAPI(
        title="sprintlock API",
        description="Conflict-free planning, context cache and checkpoints",
        version=__version__,
    )
    app.state.settings = settings
    app.state.cache = cache
    app.state.store = store

    app.add_middleware(RequestIDMiddleware, service_name=SERVICE_NAME)
    setup_problem_detail_handlers(app)

    # Health check endpoints
    @app.get("/health", tags=["health"])
    def health():
        """Health check endpoint."""
        return {
            "status": "success",
            "service": SERVICE_NAME,
            "date": datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "version": __version__,
            "environment": settings.environment,
            "cache_entries": len(cache),
            "latest_checkpoint": store.latest_version(),
        }

    @app.get("/healthz", tags=["health"])
    def healthz():
        """Kubernetes-style health check endpoint."""
        return {"status": "healthy", "service": SERVICE_NAME}

    # Planning
    @app.post("/plan", tags=["plan"])
    def plan(request: PlanRequest):
        """Partition tasks into ordered, conflict-free concurrency groups."""
        try:
            wave_plan = assigner.assign(request.tasks, request.completed)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        logger.info(f"Planned {len(request.tasks)} tasks into {len(wave_plan.groups)} groups")
        return {
            **wave_plan.summary(),
            "conflicts": analyzer.conflict_report(wave_plan.graph),
        }

    # Context cache
    @app.get("/cache", tags=["cache"])
    def cache_index():
        return {
            "entries": [e.model_dump(mode="json") for e in cache.index()],
            "stats": cache.stats(),
        }

    @app.get("/cache/{key}", response_model=CacheLookup, tags=["cache"])
    def cache_get(key: str):
        return cache.get(key)

    @app.put("/cache/{key}", tags=["cache"])
    def cache_set(key: str, request: CacheSetRequest):
        tier = cache.set(key, request.payload, request.priority, request.size, request.tier)
        return {"key": key, "cached": tier is not None, "tier": tier.value if tier else None}

    @app.delete("/cache/{key}", tags=["cache"])
    def cache_invalidate(key: str):
        if not cache.invalidate(key):
            raise HTTPException(status_code=404, detail=f"Cache key {key!r} not found")
        return {"key": key, "removed": True}

    @app.post("/cache/{key}/demote", tags=["cache"])
    def cache_demote(key: str, request: DemoteRequest):
        try:
            found = cache.demote(key, request.priority)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not found:
            raise HTTPException(status_code=404, detail=f"Cache key {key!r} not found")
        return {"key": key, "priority": request.priority.value, "pinned": False}

    # Checkpoints
    @app.get("/checkpoints", tags=["checkpoints"])
    def checkpoints():
        versions = store.list_versions()
        return {"versions": versions, "latest": versions[-1] if versions else None}

    @app.get("/checkpoints/latest", tags=["checkpoints"])
    def checkpoint_latest():
        return store.restore_checkpoint().to_record()

    @app.get("/checkpoints/{version}", tags=["checkpoints"])
    def checkpoint_get(version: int):
        return store.load(version).to_record()

    # Named snapshots
    @app.get("/snapshots", tags=["snapshots"])
    def snapshots():
        return {"snapshots": store.list_snapshots()}

    @app.put("/snapshots/{name}", tags=["snapshots"])
    def snapshot_create(name: str, request: SnapshotRequest):
        try:
            checkpoint = store.create_snapshot(name, request.version)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"name": name, "version": checkpoint.version, "wave": checkpoint.wave}

    @app.get("/snapshots/{name}", tags=["snapshots"])
    def snapshot_get(name: str):
        try:
            return store.load_snapshot(name).to_record()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    return app
