"""Pytest fixtures and configuration for call log dispatcher tests.

Provides common fixtures for configuration, the store, a hand-driven
executor and a recording listener.
"""

import os
from pathlib import Path
from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from calllog.config import reset_config
from calllog.config_schema import AppConfig
from calllog.db.store import CallLogStore, ResultSet
from calllog.dispatch.executor import Outcome, run_isolated
from calllog.dispatch.registry import Token


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def db_path(data_dir: Path) -> Path:
    return data_dir / "calllog.db"


@pytest.fixture
def sample_config_yaml(db_path: Path) -> str:
    """Return a minimal valid config.yaml content."""
    return f"""
schema_version: 1

store:
  db_path: "{db_path.as_posix()}"

query:
  log_limit: -1

logging:
  level: "WARNING"

slots:
  0: ["acct-sim1"]
  1: []
"""


@pytest.fixture
def sample_config_dict(db_path: Path) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "store": {"db_path": str(db_path)},
        "query": {"log_limit": -1},
        "slots": {0: ["acct-sim1"], 1: []},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the CALLLOG_CONFIG_PATH environment variable."""
    old_value = os.environ.get("CALLLOG_CONFIG_PATH")
    os.environ["CALLLOG_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["CALLLOG_CONFIG_PATH"]
    else:
        os.environ["CALLLOG_CONFIG_PATH"] = old_value


@pytest.fixture
async def store(db_path: Path) -> CallLogStore:
    """Create and initialize a CallLogStore."""
    store = CallLogStore(db_path)
    await store.initialize()
    return store


class RecordingListener:
    """Listener that records every delivery and the rows it carried."""

    def __init__(self, take_ownership: bool = False) -> None:
        self.take_ownership = take_ownership
        self.calls: list[ResultSet] = []
        self.call_rows: list[list[dict[str, Any]]] = []
        self.statuses: list[ResultSet] = []
        self.status_rows: list[list[dict[str, Any]]] = []

    def on_calls_fetched(self, results: ResultSet) -> bool:
        self.calls.append(results)
        self.call_rows.append(list(results))
        return self.take_ownership

    def on_voicemail_status_fetched(self, results: ResultSet) -> None:
        self.statuses.append(results)
        self.status_rows.append(list(results))


class ManualExecutor:
    """Executor stand-in that runs jobs only when a test says so.

    Lets tests complete operations in any order, including after they were
    superseded.
    """

    def __init__(self, store: Any) -> None:
        self.store = store
        self.jobs: list[tuple[Token, Any, Any]] = []

    async def start(self) -> None:
        pass

    async def join(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def submit(self, token: Token, work: Any, on_complete: Any, is_cancelled: Any = None) -> None:
        self.jobs.append((token, work, on_complete))

    def token(self, index: int) -> Token:
        return self.jobs[index][0]

    async def complete(self, index: int) -> Outcome:
        """Run job `index` now and hand its outcome to the completion callback."""
        token, work, on_complete = self.jobs[index]
        outcome = await run_isolated(work, self.store, token)
        on_complete(token, outcome)
        return outcome


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def owning_listener() -> RecordingListener:
    """Listener that takes ownership of every call result set."""
    return RecordingListener(take_ownership=True)


@pytest.fixture
def fake_store() -> MagicMock:
    """Store stand-in whose query_calls echoes the bound parameters back as rows."""
    fake = MagicMock()
    fake.query_calls = AsyncMock(
        side_effect=lambda predicate: ResultSet(
            ("where", "parameters"), [(predicate.where, predicate.parameters)]
        )
    )
    fake.query_voicemail_status = AsyncMock(
        side_effect=lambda: ResultSet(("source_package",), [("com.example.vvm",)])
    )
    fake.update_calls = AsyncMock(return_value=2)
    return fake


@pytest.fixture
def manual_executor(fake_store: MagicMock) -> ManualExecutor:
    return ManualExecutor(fake_store)
