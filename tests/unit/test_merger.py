"""
Unit tests for the integration merger and workspaces.
"""

import pytest

from sprintlock.context_cache import ContextCacheManager
from sprintlock.errors import IntegrationValidationFailure
from sprintlock.merger import (
    DirectoryWorkspace,
    InMemoryWorkspace,
    IntegrationMerger,
    WaveOutcome,
    declared_writes_only,
)
from sprintlock.models import Task, TaskOutput


class FlakyWorkspace(InMemoryWorkspace):
    """Fails every write to one path."""

    def __init__(self, bad_path, files=None):
        super().__init__(files)
        self.bad_path = bad_path

    def write(self, path, content):
        if path == self.bad_path:
            raise OSError("disk full")
        super().write(path, content)


def outputs_for(*tasks):
    return {t.id: TaskOutput(task_id=t.id, writes={p: f"{t.id}:{p}" for p in t.writes}) for t in tasks}


class TestIntegrationMerger:
    """Test validation, cascading and commit."""

    def test_advanced_wave_commits_everything(self):
        tasks = [Task(id="a", writes=["a.txt"]), Task(id="b", writes=["b.txt"])]
        merger = IntegrationMerger()

        result = merger.merge(1, {t.id: t for t in tasks}, outputs_for(*tasks))

        assert result.outcome == WaveOutcome.ADVANCED
        assert result.committed == ["a", "b"]
        assert merger.workspace.files == {"a.txt": "a:a.txt", "b.txt": "b:b.txt"}

    def test_undeclared_write_is_rejected(self):
        task = Task(id="a", writes=["a.txt"])
        output = TaskOutput(task_id="a", writes={"a.txt": "ok", "b.txt": "sneaky"})
        merger = IntegrationMerger()

        result = merger.merge(1, {"a": task}, {"a": output})

        assert result.outcome == WaveOutcome.FAILED
        assert result.committed == []
        assert result.rejected == {"a": "undeclared write: b.txt"}
        assert isinstance(result.failures[0], IntegrationValidationFailure)
        assert merger.workspace.files == {}

    def test_directory_claim_covers_nested_writes(self):
        task = Task(id="docs", writes=["docs/"])
        output = TaskOutput(task_id="docs", writes={"docs/guide/intro.md": "# Intro"})

        assert declared_writes_only(task, output) == []

    def test_degraded_wave_cascades_to_dependents(self):
        tasks = [
            Task(id="base", writes=["base.py"]),
            Task(id="child", writes=["child.py"], depends_on=["base"]),
            Task(id="other", writes=["other.py"]),
        ]

        def reject_base(task, output):
            return ["lint failed"] if task.id == "base" else []

        merger = IntegrationMerger(validators=[reject_base])
        result = merger.merge(2, {t.id: t for t in tasks}, outputs_for(*tasks))

        assert result.outcome == WaveOutcome.DEGRADED
        assert result.committed == ["other"]
        assert result.rejected["base"] == "lint failed"
        assert result.rejected["child"] == "depends on rejected base"
        assert result.cascaded == ["child"]
        assert result.penalized == ["base"]
        assert merger.workspace.files == {"other.py": "other:other.py"}

    def test_failed_upstream_rejects_dependent(self):
        tasks = [
            Task(id="up", writes=["up.py"]),
            Task(id="down", writes=["down.py"], depends_on=["up"]),
        ]
        result = IntegrationMerger().merge(
            1, {t.id: t for t in tasks}, outputs_for(tasks[1]), failed=["up"]
        )

        assert result.committed == []
        assert result.cascaded == ["down"]
        assert result.outcome == WaveOutcome.FAILED

    def test_failed_sibling_degrades_wave(self):
        tasks = [Task(id="ok", writes=["ok.py"]), Task(id="bad", writes=["bad.py"])]
        result = IntegrationMerger().merge(1, {t.id: t for t in tasks}, outputs_for(tasks[0]), failed=["bad"])

        assert result.outcome == WaveOutcome.DEGRADED
        assert result.committed == ["ok"]

    def test_dependency_must_be_completed(self):
        task = Task(id="late", writes=["late.py"], depends_on=["early"])

        rejected = IntegrationMerger().merge(1, {"late": task}, outputs_for(task))
        accepted = IntegrationMerger().merge(1, {"late": task}, outputs_for(task), completed=["early"])

        assert "dependencies not completed: early" in rejected.rejected["late"]
        assert accepted.committed == ["late"]

    def test_commit_failure_rolls_back_task(self):
        task = Task(id="multi", writes=["a.txt", "bad.txt"])
        workspace = FlakyWorkspace("bad.txt", {"a.txt": "original"})
        merger = IntegrationMerger(workspace)

        result = merger.merge(1, {"multi": task}, outputs_for(task))

        assert result.committed == []
        assert "commit failed" in result.rejected["multi"]
        assert workspace.files == {"a.txt": "original"}

    def test_raising_validator_rejects_only_that_task(self):
        def lookup_owner(task, output):
            if task.id == "a":
                raise KeyError("owner")
            return []

        tasks = [Task(id="a", writes=["a.txt"]), Task(id="b", writes=["b.txt"])]
        result = IntegrationMerger(validators=[lookup_owner]).merge(
            1, {t.id: t for t in tasks}, outputs_for(*tasks)
        )

        assert result.outcome == WaveOutcome.DEGRADED
        assert result.committed == ["b"]
        assert "validator lookup_owner raised KeyError" in result.rejected["a"]
        assert result.penalized == ["a"]

    def test_unexpected_commit_error_is_a_rejection(self):
        class BrokenWorkspace(InMemoryWorkspace):
            def write(self, path, content):
                if path == "bad.txt":
                    raise RuntimeError("encoder exploded")
                super().write(path, content)

        base = Task(id="base", writes=["bad.txt"])
        child = Task(id="child", writes=["child.txt"], depends_on=["base"])
        workspace = BrokenWorkspace()

        result = IntegrationMerger(workspace).merge(
            1, {"base": base, "child": child}, outputs_for(base, child)
        )

        assert result.committed == []
        assert "encoder exploded" in result.rejected["base"]
        assert result.cascaded == ["child"]
        assert workspace.files == {}

    def test_decision_recorded_in_cache(self):
        cache = ContextCacheManager()
        task = Task(id="a", writes=["a.txt"])
        IntegrationMerger(cache=cache).merge(4, {"a": task}, outputs_for(task))

        decision = cache.get("decision:wave-4")
        assert decision.found
        assert decision.payload == {
            "wave": 4,
            "outcome": "advanced",
            "committed": ["a"],
            "rejected": {},
        }


class TestWorkspaces:
    """Test workspace commit semantics."""

    def test_directory_workspace_commit(self, temp_dir):
        workspace = DirectoryWorkspace(str(temp_dir / "repo"))
        workspace.commit({"src/app.py": "print('hi')", "README.md": "# App"})

        assert (temp_dir / "repo" / "src" / "app.py").read_text() == "print('hi')"
        assert workspace.read("README.md") == "# App"
        assert workspace.read("missing.txt") is None
        assert not list((temp_dir / "repo" / "src").glob(".*.tmp.*"))

    def test_rollback_removes_new_files(self):
        workspace = FlakyWorkspace("z.txt")

        with pytest.raises(OSError):
            workspace.commit({"new.txt": "1", "z.txt": "2"})
        assert workspace.files == {}

    def test_directory_workspace_delete(self, temp_dir):
        workspace = DirectoryWorkspace(str(temp_dir))
        workspace.write("a.txt", "x")
        workspace.delete("a.txt")
        workspace.delete("a.txt")
        assert workspace.read("a.txt") is None
