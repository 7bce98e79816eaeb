"""
Unit tests for path handling and the data models.
"""

import pytest
from pydantic import ValidationError

from sprintlock.errors import InvalidTransition
from sprintlock.models import (
    CacheEntry,
    ContextItem,
    OwnershipRecord,
    Priority,
    SessionState,
    StatusReport,
    Task,
    TaskOutput,
    Tier,
    WorkerSession,
)
from sprintlock.utils.paths import is_path_ancestor, normalize_path, paths_overlap


class TestPaths:
    """Test path normalization and overlap."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("./src//a.py", "src/a.py"),
            ("src\\pkg\\b.py", "src/pkg/b.py"),
            ("src/x/../a.py", "src/a.py"),
            ("docs/", "docs/"),
            ("/abs/path.txt", "abs/path.txt"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_path(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "../outside.txt", ".", "a/.."])
    def test_normalize_rejects(self, raw):
        with pytest.raises(ValueError):
            normalize_path(raw)

    def test_directory_claim_overlaps_descendants(self):
        assert is_path_ancestor("src/", "src/a.py")
        assert is_path_ancestor("src/", "src/pkg/b.py")
        assert not is_path_ancestor("src", "src/a.py")
        assert not is_path_ancestor("src/", "srcfile.py")
        assert paths_overlap("src/a.py", "src/")
        assert paths_overlap("src/", "src")

    def test_distinct_files_do_not_overlap(self):
        assert not paths_overlap("src/a.py", "src/b.py")
        assert not paths_overlap("src/pkg/", "src/pkg2/")


class TestTask:
    """Test the Task submission record."""

    def test_paths_are_normalized_and_deduplicated(self):
        task = Task(id="t1", reads=["./a.txt", "a.txt", "b.txt"], writes=["c//d.txt"])

        assert task.reads == ("a.txt", "b.txt")
        assert task.writes == ("c/d.txt",)
        assert task.paths == ("c/d.txt", "a.txt", "b.txt")

    def test_read_only_paths_exclude_writes(self):
        task = Task(id="t1", reads=["a.txt", "b.txt"], writes=["a.txt"])
        assert task.read_only_paths == ("b.txt",)

    def test_self_dependency_rejected(self):
        with pytest.raises(ValidationError):
            Task(id="t1", depends_on=["t1"])

    def test_negative_effort_rejected(self):
        with pytest.raises(ValidationError):
            Task(id="t1", effort=-1)

    def test_task_is_frozen(self):
        task = Task(id="t1")
        with pytest.raises(ValidationError):
            task.id = "t2"

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            Task(id="t1", owner="someone")


class TestOwnershipRecord:
    """Test ownership record invariants."""

    def test_exclusive_record(self):
        record = OwnershipRecord(path="a.txt", exclusive_owner="t1")
        assert record.mode == "exclusive"
        assert record.holders == ["t1"]

    def test_shared_record_sorts_readers(self):
        record = OwnershipRecord(path="a.txt", shared_readers=["t2", "t1", "t2"])
        assert record.mode == "shared"
        assert record.shared_readers == ["t1", "t2"]

    def test_exclusive_and_shared_are_mutually_exclusive(self):
        with pytest.raises(ValidationError):
            OwnershipRecord(path="a.txt", exclusive_owner="t1", shared_readers=["t2"])

    def test_record_needs_a_holder(self):
        with pytest.raises(ValidationError):
            OwnershipRecord(path="a.txt")


class TestWorkerSession:
    """Test the worker session state machine."""

    def test_happy_path(self):
        session = WorkerSession(id="s1", task_id="t1")
        for state in (SessionState.RUNNING, SessionState.SUCCEEDED, SessionState.FINALIZED):
            session.transition(state)
        assert session.state == SessionState.FINALIZED
        assert session.is_wave_terminal

    def test_timeout_then_reassign(self):
        session = WorkerSession(id="s1", task_id="t1", state=SessionState.RUNNING)
        session.transition(SessionState.TIMED_OUT)
        session.transition(SessionState.REASSIGNED)
        assert session.state.value == "reassigned"

    @pytest.mark.parametrize(
        "start,target",
        [
            (SessionState.ASSIGNED, SessionState.SUCCEEDED),
            (SessionState.RUNNING, SessionState.FINALIZED),
            (SessionState.FINALIZED, SessionState.RUNNING),
            (SessionState.REASSIGNED, SessionState.ASSIGNED),
        ],
    )
    def test_illegal_transitions(self, start, target):
        session = WorkerSession(id="s1", task_id="t1", state=start)
        with pytest.raises(InvalidTransition):
            session.transition(target)
        assert session.state == start

    def test_running_is_not_terminal(self):
        session = WorkerSession(id="s1", task_id="t1", state=SessionState.RUNNING)
        assert not session.is_wave_terminal


class TestMessages:
    """Test status reports, task outputs and cache entries."""

    def test_status_report_progress_bounds(self):
        with pytest.raises(ValidationError):
            StatusReport(task_id="t1", state="running", progress_percent=101)

    def test_status_report_rejects_unknown_state(self):
        with pytest.raises(ValidationError):
            StatusReport(task_id="t1", state="paused")

    def test_task_output_normalizes_paths(self):
        output = TaskOutput(task_id="t1", writes={"./a//b.txt": "x"})
        assert output.writes == {"a/b.txt": "x"}

    def test_cache_entry_expiry(self):
        item = ContextItem(key="k", payload="v", size=1)
        entry = CacheEntry(item=item, tier=Tier.HOT, expires_at=10.0)
        assert not entry.is_expired(9.9)
        assert entry.is_expired(10.0)

    def test_pinned_entry_never_expires(self):
        item = ContextItem(key="k", payload="v", size=1, priority=Priority.CRITICAL, pinned=True)
        entry = CacheEntry(item=item, tier=Tier.HOT, expires_at=10.0)
        assert not entry.is_expired(1e9)
