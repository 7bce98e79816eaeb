"""
Pytest configuration and shared fixtures.
"""

import logging
import random
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from sprintlock.config import Settings, config_manager
from sprintlock.config.settings import CONFIG_FILE_ENV
from sprintlock.models import Task
from sprintlock.utils.jsonl_logger import ROOT_LOGGER


class FakeClock:
    """Manually advanced clock for heartbeat and TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep configuration and logging from leaking between tests."""
    monkeypatch.delenv(CONFIG_FILE_ENV, raising=False)
    monkeypatch.setattr(config_manager, "_config_manager", None)
    yield
    logging.getLogger(ROOT_LOGGER).handlers.clear()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(temp_dir: Path) -> Settings:
    """Fast settings for tests that run real worker threads."""
    return Settings(
        environment="testing",
        coordinator={
            "max_workers": 3,
            "heartbeat_interval": 0.05,
            "heartbeat_timeout": 0.5,
            "retry_limit": 2,
            "poll_interval": 0.01,
        },
        checkpoint={"directory": str(temp_dir / "checkpoints"), "retention": 10},
    )


@pytest.fixture
def example_tasks() -> list[Task]:
    """A and B both write f1, C reads f1, D and E touch disjoint files."""
    return [
        Task(id="A", writes=["f1"]),
        Task(id="B", writes=["f1"]),
        Task(id="C", reads=["f1"]),
        Task(id="D", writes=["d.txt"]),
        Task(id="E", writes=["e.txt"]),
    ]


def _random_tasks(rng: random.Random, count: int, paths: int = 6) -> list[Task]:
    """Random task batch over a small path pool, so conflicts are common."""
    pool = [f"src/file{i}.py" for i in range(paths)] + ["src/pkg/", "src/pkg/mod.py"]
    tasks = []
    for i in range(count):
        writes = rng.sample(pool, rng.randint(0, 2))
        reads = rng.sample(pool, rng.randint(0, 2))
        depends_on = [f"t{rng.randrange(i)}"] if i and rng.random() < 0.2 else []
        tasks.append(
            Task(
                id=f"t{i}",
                reads=reads,
                writes=writes,
                depends_on=depends_on,
                effort=rng.randint(1, 5),
            )
        )
    return tasks


@pytest.fixture
def random_tasks():
    """Factory for random task batches: ``random_tasks(rng, count)``."""
    return _random_tasks


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "api: mark test as API test")
    config.addinivalue_line("markers", "cli: mark test as CLI test")
    config.addinivalue_line("markers", "unit: mark test as unit test")


def pytest_collection_modifyitems(config: Any, items: list[Any]) -> None:
    """Modify test collection to add markers based on file location."""
    for item in items:
        path = Path(str(item.fspath))
        if "unit" in path.parts:
            item.add_marker(pytest.mark.unit)
        elif "api" in path.parts:
            item.add_marker(pytest.mark.api)
        elif "cli" in path.parts:
            item.add_marker(pytest.mark.cli)

        if "fuzz" in item.name or "threaded" in item.name:
            item.add_marker(pytest.mark.slow)
