import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
import uvicorn
import yaml
from pydantic import ValidationError

from ..checkpoint_store import CheckpointStore
from ..config import Settings, get_config
from ..conflicts import ConflictAnalyzer
from ..errors import CheckpointCorruption, CheckpointNotFound, NoUsableCheckpoint, SnapshotNotFound
from ..models import Task
from ..ownership import OwnershipAssigner
from ..utils.jsonl_logger import configure_logging

app = typer.Typer(help="Conflict-free parallel work coordination and checkpoints.")


def fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def load_tasks_file(path: Path) -> tuple[list[Task], list[str]]:
    """Read tasks from a YAML or JSON file.

    The file holds either a list of tasks or a mapping with ``tasks`` and an
    optional ``completed`` list of task ids.
    """
    with open(path, encoding="utf-8") as f:
        data: Any = yaml.safe_load(f)

    completed: list[str] = []
    if isinstance(data, dict):
        completed = list(data.get("completed") or [])
        data = data.get("tasks")
    if not isinstance(data, list):
        raise ValueError("expected a list of tasks or a mapping with a 'tasks' list")
    return [Task.model_validate(item) for item in data], completed


def get_store(ctx: typer.Context, directory: Optional[str]) -> CheckpointStore:
    settings: Settings = ctx.obj
    if directory:
        return CheckpointStore(directory, settings.checkpoint.retention)
    return CheckpointStore.from_settings(settings.checkpoint)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
):
    """Load configuration and set up logging."""
    try:
        settings = get_config(config)
    except (FileNotFoundError, ValidationError) as e:
        fail(str(e))
    configure_logging(settings.logging.level, settings.logging.format, settings.logging.log_dir)
    ctx.obj = settings


@app.command()
def plan(
    ctx: typer.Context,
    tasks_file: Path = typer.Argument(..., help="YAML or JSON file with task records"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
):
    """Partition tasks into ordered, conflict-free concurrency groups."""
    settings: Settings = ctx.obj
    if not tasks_file.exists():
        fail(f"Tasks file not found: {tasks_file}")
    try:
        tasks, completed = load_tasks_file(tasks_file)
        analyzer = ConflictAnalyzer(settings.coordinator.critical_paths)
        wave_plan = OwnershipAssigner(analyzer, settings.coordinator.tie_break).assign(
            tasks, completed
        )
    except (ValueError, yaml.YAMLError) as e:
        fail(str(e))

    conflicts = analyzer.conflict_report(wave_plan.graph)
    if as_json:
        print(json.dumps({**wave_plan.summary(), "conflicts": conflicts}, indent=2))
        return

    print(f"Plan: {len(tasks)} tasks, {len(wave_plan.groups)} groups")
    for index, group in enumerate(wave_plan.groups):
        print(f"  Group {index + 1}: {', '.join(group)}")
    if wave_plan.blocked:
        print("Blocked:")
        for task_id, reason in wave_plan.blocked.items():
            print(f"  {task_id}: {reason}")
    if conflicts:
        print("Conflicts:")
        for conflict in conflicts:
            print(f"  [{conflict['severity']}] {conflict['path']}: {', '.join(conflict['tasks'])}")


@app.command()
def checkpoints(
    ctx: typer.Context,
    directory: Optional[str] = typer.Option(None, "--dir", help="Checkpoint directory"),
):
    """List checkpoint versions on disk."""
    store = get_store(ctx, directory)
    versions = store.list_versions()
    if not versions:
        print(f"No checkpoints in {store.directory}")
        return
    print(f"Checkpoints in {store.directory}:")
    for version in versions:
        print(f"  {version}  {store.path_for(version).name}")


@app.command("show-checkpoint")
def show_checkpoint(
    ctx: typer.Context,
    version: Optional[int] = typer.Option(None, "--version", "-v", help="Version (default: latest usable)"),
    directory: Optional[str] = typer.Option(None, "--dir", help="Checkpoint directory"),
):
    """Print a checkpoint record as JSON."""
    store = get_store(ctx, directory)
    try:
        checkpoint = store.load(version) if version is not None else store.restore_checkpoint()
    except (CheckpointNotFound, CheckpointCorruption, NoUsableCheckpoint) as e:
        fail(str(e))
    print(json.dumps(checkpoint.to_record(), indent=2))


@app.command("verify-checkpoint")
def verify_checkpoint(
    ctx: typer.Context,
    version: int = typer.Argument(..., help="Checkpoint version"),
    directory: Optional[str] = typer.Option(None, "--dir", help="Checkpoint directory"),
):
    """Check a checkpoint's schema and checksum."""
    store = get_store(ctx, directory)
    try:
        checkpoint = store.verify(version)
    except (CheckpointNotFound, CheckpointCorruption) as e:
        fail(str(e))
    print(f"Checkpoint {version} OK (wave {checkpoint.wave}, checksum {checkpoint.checksum[:12]})")


@app.command()
def snapshot(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name"),
    version: Optional[int] = typer.Option(None, "--version", "-v", help="Version (default: latest usable)"),
    directory: Optional[str] = typer.Option(None, "--dir", help="Checkpoint directory"),
):
    """Keep a copy of a checkpoint under a name that retention never prunes."""
    store = get_store(ctx, directory)
    try:
        checkpoint = store.create_snapshot(name, version)
    except (ValueError, CheckpointNotFound, CheckpointCorruption, NoUsableCheckpoint) as e:
        fail(str(e))
    print(f"Snapshot {name!r} saved from checkpoint {checkpoint.version} (wave {checkpoint.wave})")


@app.command()
def snapshots(
    ctx: typer.Context,
    directory: Optional[str] = typer.Option(None, "--dir", help="Checkpoint directory"),
):
    """List named snapshots, newest first."""
    store = get_store(ctx, directory)
    entries = store.list_snapshots()
    if not entries:
        print(f"No snapshots in {store.snapshot_directory}")
        return
    for entry in entries:
        print(f"  {entry['name']}  checkpoint {entry['version']}  wave {entry['wave']}  {entry['created']}")


@app.command("restore-snapshot")
def restore_snapshot(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name"),
    directory: Optional[str] = typer.Option(None, "--dir", help="Checkpoint directory"),
):
    """Make a snapshot the latest checkpoint so the next resume starts from it."""
    store = get_store(ctx, directory)
    try:
        checkpoint = store.restore_snapshot(name)
    except (ValueError, SnapshotNotFound, CheckpointCorruption) as e:
        fail(str(e))
    print(f"Snapshot {name!r} restored as checkpoint {checkpoint.version}")


@app.command()
def serve(
    ctx: typer.Context,
    port: int = typer.Option(8000, help="Port to run the service on"),
    host: str = typer.Option("127.0.0.1", help="Host to bind the service to"),
):
    """Start the sprintlock API service."""
    from ..api.main import create_app

    settings: Settings = ctx.obj
    print(f"Service will be available at: http://{host}:{port}")
    print("Press Ctrl+C to stop the service")
    try:
        uvicorn.run(create_app(settings), host=host, port=port)
    except KeyboardInterrupt:
        print("\nService stopped.")


if __name__ == "__main__":
    app()
