"""
Versioned, checksummed checkpoints on disk.

Each checkpoint is one JSON file, ``checkpoint-<version>.json``. Saving writes
a temp file, fsyncs it, re-reads and verifies it, and renames it into place,
so a crash mid-write never damages an existing checkpoint. Restoring walks
from the requested version down through older retained ones until one passes
schema and checksum validation.

Named snapshots are copies of a checkpoint kept under ``snapshots/<name>.json``.
Retention pruning never touches them.
"""

import json
import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from jsonschema import Draft202012Validator
from pydantic import ValidationError

from .config.settings import CheckpointSettings
from .errors import CheckpointCorruption, CheckpointNotFound, NoUsableCheckpoint, SnapshotNotFound
from .models import Checkpoint, EngineState, compute_checksum
from .utils.atomic_io import atomic_write_json, read_json_file
from .utils.jsonl_logger import get_logger, log_with_context

logger = get_logger("checkpoint")

FILE_PATTERN = re.compile(r"^checkpoint-(\d+)\.json$")
SNAPSHOT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

CHECKPOINT_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "sprintlock checkpoint",
    "type": "object",
    "required": [
        "version",
        "timestamp",
        "checksum",
        "wave",
        "ownership",
        "sessions",
        "cache_index",
        "pending",
        "completed",
        "failed",
        "attempts",
    ],
    "properties": {
        "version": {"type": "integer", "minimum": 1},
        "timestamp": {"type": "string", "minLength": 1},
        "checksum": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        "wave": {"type": "integer", "minimum": 0},
        "ownership": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["path"],
                "properties": {
                    "path": {"type": "string"},
                    "exclusive_owner": {"type": ["string", "null"]},
                    "shared_readers": _STRING_LIST,
                },
            },
        },
        "sessions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "task_id", "state"],
                "properties": {
                    "id": {"type": "string"},
                    "task_id": {"type": "string"},
                    "state": {
                        "enum": [
                            "assigned",
                            "running",
                            "succeeded",
                            "failed",
                            "timed-out",
                            "reassigned",
                            "finalized",
                        ]
                    },
                    "retry_count": {"type": "integer", "minimum": 0},
                },
            },
        },
        "cache_index": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key", "tier", "priority", "size"],
                "properties": {
                    "key": {"type": "string"},
                    "tier": {"enum": ["hot", "warm", "cold"]},
                    "priority": {"enum": ["critical", "important", "optional"]},
                    "size": {"type": "integer", "minimum": 0},
                },
            },
        },
        "pending": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string"},
                    "reads": _STRING_LIST,
                    "writes": _STRING_LIST,
                    "depends_on": _STRING_LIST,
                },
            },
        },
        "completed": _STRING_LIST,
        "failed": _STRING_LIST,
        "attempts": {"type": "object", "additionalProperties": {"type": "integer", "minimum": 0}},
        "timeouts": {"type": "object", "additionalProperties": {"type": "integer", "minimum": 0}},
    },
}


def _format_error(e: Any) -> str:
    loc = "/".join(str(x) for x in e.path) or "<root>"
    return f"{loc}: {e.message}"


class CheckpointStore:
    """Single write path for checkpoint files in one directory."""

    def __init__(self, directory: str, retention: int = 10):
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.directory = Path(directory)
        self.retention = retention
        self._validator = Draft202012Validator(CHECKPOINT_SCHEMA)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: CheckpointSettings) -> "CheckpointStore":
        return cls(settings.directory, settings.retention)

    def path_for(self, version: int) -> Path:
        return self.directory / f"checkpoint-{version:08d}.json"

    def list_versions(self) -> list[int]:
        """Versions on disk, oldest first."""
        if not self.directory.exists():
            return []
        versions = []
        for entry in self.directory.iterdir():
            match = FILE_PATTERN.match(entry.name)
            if match and entry.is_file():
                versions.append(int(match.group(1)))
        return sorted(versions)

    def latest_version(self) -> Optional[int]:
        versions = self.list_versions()
        return versions[-1] if versions else None

    def save(self, state: EngineState) -> Checkpoint:
        """Write a new checkpoint of ``state`` and prune beyond retention."""
        with self._lock:
            version = (self.latest_version() or 0) + 1
            timestamp = datetime.now(timezone.utc).isoformat()
            checkpoint = Checkpoint.from_state(version, timestamp, state)

            def verify(temp_file: Path) -> None:
                self._validate(version, read_json_file(temp_file))

            atomic_write_json(self.path_for(version), checkpoint.to_record(), verify=verify)
            pruned = self._prune()
            log_with_context(
                logger,
                logging.INFO,
                "Saved checkpoint",
                version=version,
                wave=state.wave,
                pruned=pruned,
            )
            return checkpoint

    def load(self, version: int) -> Checkpoint:
        """Load and validate one checkpoint.

        Raises:
            CheckpointNotFound: If the version is not on disk
            CheckpointCorruption: If it fails parsing, schema or checksum validation
        """
        path = self.path_for(version)
        if not path.exists():
            raise CheckpointNotFound(version)
        try:
            record = read_json_file(path)
        except (OSError, ValueError) as e:
            raise CheckpointCorruption(version, f"unreadable: {e}") from e
        return self._validate(version, record)

    def verify(self, version: int) -> Checkpoint:
        """Alias of ``load`` for callers that only care whether it validates."""
        return self.load(version)

    def restore_checkpoint(self, version: Optional[int] = None) -> Checkpoint:
        """Newest valid checkpoint at or below ``version`` (default: latest).

        Raises:
            CheckpointNotFound: If an explicit version is not on disk
            NoUsableCheckpoint: If no retained checkpoint down to the floor validates
        """
        versions = self.list_versions()
        if version is not None and version not in versions:
            raise CheckpointNotFound(version)

        candidates = [v for v in versions if version is None or v <= version]
        candidates = list(reversed(candidates))[: self.retention]
        reasons: dict[int, str] = {}
        for candidate in candidates:
            try:
                checkpoint = self.load(candidate)
            except (CheckpointCorruption, CheckpointNotFound) as e:
                reasons[candidate] = str(e)
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Skipping unusable checkpoint",
                    error=str(e),
                    version=candidate,
                )
                continue
            if reasons:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Fell back to older checkpoint",
                    version=candidate,
                    skipped=sorted(reasons, reverse=True),
                )
            return checkpoint

        error = NoUsableCheckpoint(candidates, reasons)
        log_with_context(logger, logging.ERROR, "No usable checkpoint", error=str(error))
        raise error

    def restore(self, version: Optional[int] = None) -> EngineState:
        return self.restore_checkpoint(version).state

    # Named snapshots

    @property
    def snapshot_directory(self) -> Path:
        return self.directory / "snapshots"

    def snapshot_path(self, name: str) -> Path:
        if not SNAPSHOT_NAME.match(name):
            raise ValueError(f"Invalid snapshot name: {name!r}")
        return self.snapshot_directory / f"{name}.json"

    def create_snapshot(self, name: str, version: Optional[int] = None) -> Checkpoint:
        """Copy a checkpoint (default: the newest usable one) under ``name``.

        An existing snapshot of the same name is replaced.
        """
        path = self.snapshot_path(name)
        checkpoint = self.load(version) if version is not None else self.restore_checkpoint()

        def verify(temp_file: Path) -> None:
            self._validate(checkpoint.version, read_json_file(temp_file))

        with self._lock:
            atomic_write_json(path, checkpoint.to_record(), verify=verify)
        log_with_context(
            logger, logging.INFO, "Created snapshot", snapshot=name, version=checkpoint.version
        )
        return checkpoint

    def list_snapshots(self) -> list[dict[str, Any]]:
        """Snapshots on disk, most recently written first."""
        if not self.snapshot_directory.exists():
            return []
        snapshots: list[tuple[float, dict[str, Any]]] = []
        for entry in self.snapshot_directory.glob("*.json"):
            if not entry.is_file():
                continue
            try:
                record = read_json_file(entry)
            except (OSError, ValueError):
                record = {}
            modified = entry.stat().st_mtime
            snapshots.append(
                (
                    modified,
                    {
                        "name": entry.stem,
                        "version": record.get("version") if isinstance(record, dict) else None,
                        "wave": record.get("wave") if isinstance(record, dict) else None,
                        "created": datetime.fromtimestamp(modified, timezone.utc).isoformat(),
                    },
                )
            )
        snapshots.sort(key=lambda item: item[0], reverse=True)
        return [info for _, info in snapshots]

    def load_snapshot(self, name: str) -> Checkpoint:
        """Load and validate a named snapshot.

        Raises:
            SnapshotNotFound: If no snapshot has that name
            CheckpointCorruption: If it fails parsing, schema or checksum validation
        """
        path = self.snapshot_path(name)
        if not path.exists():
            raise SnapshotNotFound(name)
        try:
            record = read_json_file(path)
        except (OSError, ValueError) as e:
            raise CheckpointCorruption(0, f"snapshot {name!r} unreadable: {e}") from e
        version = record.get("version") if isinstance(record, dict) else None
        return self._validate(version if isinstance(version, int) else 0, record)

    def restore_snapshot(self, name: str) -> Checkpoint:
        """Save a snapshot's state as a new checkpoint so it becomes the latest.

        Existing checkpoints are kept, subject to retention.
        """
        snapshot = self.load_snapshot(name)
        checkpoint = self.save(snapshot.state)
        log_with_context(
            logger,
            logging.INFO,
            "Restored snapshot",
            snapshot=name,
            source_version=snapshot.version,
            version=checkpoint.version,
        )
        return checkpoint

    def _validate(self, version: int, record: Any) -> Checkpoint:
        errors = [_format_error(e) for e in self._validator.iter_errors(record)]
        if errors:
            raise CheckpointCorruption(version, "; ".join(errors))
        if record["version"] != version:
            raise CheckpointCorruption(version, f"file holds version {record['version']}")

        body = {k: v for k, v in record.items() if k != "checksum"}
        if compute_checksum(body) != record["checksum"]:
            raise CheckpointCorruption(version, "checksum mismatch")
        try:
            return Checkpoint.model_validate(record)
        except ValidationError as e:
            raise CheckpointCorruption(version, str(e)) from e

    def _prune(self) -> list[int]:
        versions = self.list_versions()
        excess = versions[: max(0, len(versions) - self.retention)]
        for version in excess:
            self.path_for(version).unlink(missing_ok=True)
        return excess
