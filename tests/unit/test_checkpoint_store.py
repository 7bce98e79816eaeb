"""
Unit tests for the checkpoint store.
"""

import json

import pytest

from sprintlock.checkpoint_store import CheckpointStore
from sprintlock.errors import (
    CheckpointCorruption,
    CheckpointNotFound,
    NoUsableCheckpoint,
    SnapshotNotFound,
)
from sprintlock.models import (
    CacheIndexEntry,
    EngineState,
    OwnershipRecord,
    Priority,
    SessionState,
    Task,
    Tier,
    WorkerSession,
)


@pytest.fixture
def store(temp_dir):
    return CheckpointStore(str(temp_dir / "checkpoints"), retention=3)


def make_state(wave: int = 1) -> EngineState:
    return EngineState(
        wave=wave,
        ownership=[
            OwnershipRecord(path="src/a.py", exclusive_owner="A"),
            OwnershipRecord(path="docs/readme.md", shared_readers=["C", "B"]),
        ],
        sessions=[
            WorkerSession(id="A#1", task_id="A", state=SessionState.RUNNING, last_heartbeat=12.5)
        ],
        cache_index=[
            CacheIndexEntry(key="rules", tier=Tier.COLD, priority=Priority.CRITICAL, size=10, pinned=True)
        ],
        pending=[Task(id="A", writes=["src/a.py"]), Task(id="B", reads=["docs/readme.md"], depends_on=["A"])],
        completed=["Z"],
        failed=["Y"],
        attempts={"A": 1, "Y": 3},
        timeouts={"A": 2},
    )


def corrupt(path, mutate):
    record = json.loads(path.read_text(encoding="utf-8"))
    mutate(record)
    path.write_text(json.dumps(record), encoding="utf-8")


class TestSave:
    def test_round_trip(self, store):
        state = make_state()
        checkpoint = store.save(state)

        assert checkpoint.version == 1
        assert len(checkpoint.checksum) == 64
        assert store.restore() == state

    def test_versions_increase(self, store):
        for wave in range(1, 4):
            assert store.save(make_state(wave)).version == wave

        assert store.list_versions() == [1, 2, 3]
        assert store.latest_version() == 3
        assert store.path_for(2).name == "checkpoint-00000002.json"

    def test_retention_prunes_oldest(self, store):
        for wave in range(1, 6):
            store.save(make_state(wave))

        assert store.list_versions() == [3, 4, 5]
        assert not store.path_for(1).exists()

    def test_no_temp_files_left(self, store):
        store.save(make_state())
        names = [p.name for p in store.directory.iterdir()]
        assert names == ["checkpoint-00000001.json"]

    def test_invalid_retention(self, temp_dir):
        with pytest.raises(ValueError):
            CheckpointStore(str(temp_dir), retention=0)


class TestRestore:
    def test_restore_specific_version(self, store):
        for wave in range(1, 4):
            store.save(make_state(wave))

        assert store.restore(2).wave == 2
        assert store.restore().wave == 3

    def test_falls_back_past_unparseable_file(self, store):
        store.save(make_state(1))
        store.save(make_state(2))
        store.path_for(2).write_text("{not json", encoding="utf-8")

        checkpoint = store.restore_checkpoint()

        assert checkpoint.version == 1
        assert checkpoint.wave == 1

    def test_checksum_mismatch_detected(self, store):
        store.save(make_state(1))
        store.save(make_state(2))
        corrupt(store.path_for(2), lambda r: r.update(wave=7))

        with pytest.raises(CheckpointCorruption, match="checksum mismatch"):
            store.load(2)
        assert store.restore().wave == 1

    def test_schema_violation_detected(self, store):
        store.save(make_state(1))
        corrupt(store.path_for(1), lambda r: r.pop("pending"))

        with pytest.raises(CheckpointCorruption, match="pending"):
            store.verify(1)

    def test_all_corrupt(self, store):
        for wave in range(1, 4):
            store.save(make_state(wave))
        for version in store.list_versions():
            store.path_for(version).write_text("", encoding="utf-8")

        with pytest.raises(NoUsableCheckpoint) as exc_info:
            store.restore()

        assert exc_info.value.tried == [3, 2, 1]
        assert set(exc_info.value.reasons) == {1, 2, 3}

    def test_missing_version(self, store):
        store.save(make_state())

        with pytest.raises(CheckpointNotFound):
            store.restore(9)
        with pytest.raises(CheckpointNotFound):
            store.load(9)

    def test_empty_store(self, store):
        assert store.list_versions() == []
        assert store.latest_version() is None
        with pytest.raises(NoUsableCheckpoint) as exc_info:
            store.restore()
        assert exc_info.value.tried == []

    def test_from_settings(self, settings):
        store = CheckpointStore.from_settings(settings.checkpoint)
        assert store.retention == 10
        assert store.directory.name == "checkpoints"


class TestSnapshots:
    def test_snapshot_survives_retention(self, store):
        store.save(make_state(1))
        snapshot = store.create_snapshot("before-refactor")
        for wave in range(2, 6):
            store.save(make_state(wave))

        assert not store.path_for(1).exists()
        assert snapshot.version == 1
        assert store.load_snapshot("before-refactor").state == make_state(1)

    def test_snapshot_of_explicit_version(self, store):
        for wave in range(1, 4):
            store.save(make_state(wave))

        assert store.create_snapshot("wave-2", version=2).wave == 2
        with pytest.raises(CheckpointNotFound):
            store.create_snapshot("nope", version=9)

    def test_list_snapshots(self, store):
        assert store.list_snapshots() == []
        store.save(make_state(1))
        store.create_snapshot("first")

        [entry] = store.list_snapshots()
        assert entry["name"] == "first"
        assert entry["version"] == 1
        assert entry["wave"] == 1
        assert entry["created"]

    def test_restore_snapshot_becomes_latest(self, store):
        store.save(make_state(1))
        store.create_snapshot("good")
        store.save(make_state(2))

        restored = store.restore_snapshot("good")

        assert restored.version == 3
        assert store.restore().wave == 1
        assert store.list_versions() == [1, 2, 3]

    def test_missing_snapshot(self, store):
        with pytest.raises(SnapshotNotFound):
            store.restore_snapshot("ghost")

    def test_invalid_snapshot_name(self, store):
        store.save(make_state(1))
        with pytest.raises(ValueError):
            store.create_snapshot("../escape")

    def test_tampered_snapshot_detected(self, store):
        store.save(make_state(1))
        store.create_snapshot("s")
        corrupt(store.snapshot_path("s"), lambda r: r.update(wave=7))

        with pytest.raises(CheckpointCorruption, match="checksum mismatch"):
            store.load_snapshot("s")
