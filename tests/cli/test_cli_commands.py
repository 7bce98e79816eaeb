"""
CLI command tests for sprintlock.
"""

import json

import pytest
import yaml
from typer.testing import CliRunner

from sprintlock.checkpoint_store import CheckpointStore
from sprintlock.cli.main import app as cli_app
from sprintlock.models import EngineState, Task

runner = CliRunner()


@pytest.fixture
def tasks_file(temp_dir):
    path = temp_dir / "tasks.yaml"
    path.write_text(
        yaml.safe_dump(
            [
                {"id": "A", "writes": ["f1"]},
                {"id": "B", "writes": ["f1"]},
                {"id": "C", "reads": ["f1"]},
                {"id": "D", "writes": ["d.txt"]},
                {"id": "E", "writes": ["e.txt"]},
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def checkpoint_dir(temp_dir):
    directory = temp_dir / "checkpoints"
    store = CheckpointStore(str(directory))
    for wave in (1, 2):
        store.save(EngineState(wave=wave, pending=[Task(id="A", writes=["a.py"])]))
    return directory


class TestPlanCommand:
    def test_plan_text(self, tasks_file):
        result = runner.invoke(cli_app, ["plan", str(tasks_file)])

        assert result.exit_code == 0
        assert "Plan: 5 tasks, 3 groups" in result.output
        assert "Group 1: A, D, E" in result.output
        assert "Group 3: C" in result.output
        assert "f1: A, B, C" in result.output

    def test_plan_json(self, tasks_file):
        result = runner.invoke(cli_app, ["plan", str(tasks_file), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["groups"] == [["A", "D", "E"], ["B"], ["C"]]
        assert data["conflicts"][0]["path"] == "f1"

    def test_plan_mapping_with_completed(self, temp_dir):
        path = temp_dir / "batch.json"
        path.write_text(
            json.dumps(
                {
                    "tasks": [{"id": "B", "depends_on": ["A"]}, {"id": "C", "depends_on": ["X"]}],
                    "completed": ["A"],
                }
            ),
            encoding="utf-8",
        )

        result = runner.invoke(cli_app, ["plan", str(path)])

        assert result.exit_code == 0
        assert "Group 1: B" in result.output
        assert "Blocked:" in result.output
        assert "C: waiting on X" in result.output

    def test_plan_missing_file(self, temp_dir):
        result = runner.invoke(cli_app, ["plan", str(temp_dir / "absent.yaml")])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_plan_invalid_tasks(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text(yaml.safe_dump({"tasks": "nope"}), encoding="utf-8")

        result = runner.invoke(cli_app, ["plan", str(path)])

        assert result.exit_code == 1
        assert "expected a list of tasks" in result.output

    def test_plan_uses_config_tie_break(self, temp_dir):
        config = temp_dir / "sprintlock.yaml"
        config.write_text(yaml.safe_dump({"coordinator": {"tie_break": "effort"}}), encoding="utf-8")
        path = temp_dir / "tasks.yaml"
        path.write_text(
            yaml.safe_dump(
                [{"id": "small", "writes": ["x"], "effort": 1}, {"id": "big", "writes": ["x"], "effort": 5}]
            ),
            encoding="utf-8",
        )

        result = runner.invoke(cli_app, ["--config", str(config), "plan", str(path)])

        assert result.exit_code == 0
        assert "Group 1: big" in result.output

    def test_missing_config_file(self, temp_dir, tasks_file):
        result = runner.invoke(cli_app, ["--config", str(temp_dir / "nope.yaml"), "plan", str(tasks_file)])

        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestCheckpointCommands:
    def test_list_empty(self, temp_dir):
        result = runner.invoke(cli_app, ["checkpoints", "--dir", str(temp_dir / "none")])

        assert result.exit_code == 0
        assert "No checkpoints in" in result.output

    def test_list(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["checkpoints", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 0
        assert "checkpoint-00000001.json" in result.output
        assert "checkpoint-00000002.json" in result.output

    def test_show_latest(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["show-checkpoint", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 0
        record = json.loads(result.stdout)
        assert record["version"] == 2
        assert record["pending"][0]["writes"] == ["a.py"]

    def test_show_version(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["show-checkpoint", "-v", "1", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["wave"] == 1

    def test_show_missing_version(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["show-checkpoint", "-v", "7", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 1
        assert "Checkpoint 7 does not exist" in result.output

    def test_verify(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["verify-checkpoint", "2", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 0
        assert "Checkpoint 2 OK (wave 2" in result.output

    def test_verify_corrupt(self, checkpoint_dir):
        (checkpoint_dir / "checkpoint-00000002.json").write_text("[]", encoding="utf-8")

        result = runner.invoke(cli_app, ["verify-checkpoint", "2", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 1
        assert "Checkpoint 2 is corrupt" in result.output


class TestSnapshotCommands:
    def test_snapshot_list_and_restore(self, checkpoint_dir):
        directory = str(checkpoint_dir)

        result = runner.invoke(cli_app, ["snapshot", "first", "-v", "1", "--dir", directory])
        assert result.exit_code == 0
        assert "Snapshot 'first' saved from checkpoint 1 (wave 1)" in result.output

        result = runner.invoke(cli_app, ["snapshots", "--dir", directory])
        assert result.exit_code == 0
        assert "first  checkpoint 1  wave 1" in result.output

        result = runner.invoke(cli_app, ["restore-snapshot", "first", "--dir", directory])
        assert result.exit_code == 0
        assert "restored as checkpoint 3" in result.output
        assert CheckpointStore(directory).restore().wave == 1

    def test_no_snapshots(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["snapshots", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 0
        assert "No snapshots in" in result.output

    def test_restore_missing_snapshot(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["restore-snapshot", "ghost", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 1
        assert "Snapshot 'ghost' does not exist" in result.output

    def test_invalid_snapshot_name(self, checkpoint_dir):
        result = runner.invoke(cli_app, ["snapshot", "../x", "--dir", str(checkpoint_dir)])

        assert result.exit_code == 1
        assert "Invalid snapshot name" in result.output
