"""Pytest configuration and fixtures for CodeFlow CLI tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

from codeflow_cli.storage import GraphStore, ProjectManager


class _MockLocalLLM:
    """Stand-in for LocalLLM that never touches the network.

    ``response`` is returned by ``complete``; ``None`` simulates an
    unavailable provider.
    """

    response = None

    def __init__(self, **kwargs):
        self.provider_name = kwargs.get("provider", "mock")
        self.model = kwargs.get("model", "mock-model")
        self.api_key = kwargs.get("api_key")
        self.endpoint = kwargs.get("endpoint")
        self.provider = MagicMock()
        self.provider.generate.return_value = self.response

    def complete(self, prompt: str):
        return self.provider.generate(prompt)


@pytest.fixture(autouse=True)
def mock_local_llm(monkeypatch):
    """Automatically mock LocalLLM in all tests to avoid network connections.

    OllamaProvider.generate() tries to connect to localhost:11434, which
    makes CI hang. Tests set ``mock_local_llm.response`` to a canned answer.
    """
    mock_cls = type("MockLocalLLM", (_MockLocalLLM,), {"response": None})
    monkeypatch.setattr("codeflow_cli.llm.LocalLLM", mock_cls)
    monkeypatch.setattr("codeflow_cli.classifier.LocalLLM", mock_cls)
    monkeypatch.setattr("codeflow_cli.cli.LocalLLM", mock_cls)
    return mock_cls


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_snapshot_path() -> Path:
    """Get path to the sample graph snapshot."""
    return Path(__file__).parent / "fixtures" / "sample_snapshot.json"


@pytest.fixture
def sample_snapshot(sample_snapshot_path: Path) -> dict:
    return json.loads(sample_snapshot_path.read_text(encoding="utf-8"))


@pytest.fixture
def temp_project_manager(temp_dir: Path, monkeypatch) -> ProjectManager:
    """Create a ProjectManager with temporary storage."""
    memory_dir = temp_dir / "memory"
    state_file = temp_dir / "state.json"

    # Patch both config AND storage modules (storage imports at module load)
    monkeypatch.setattr("codeflow_cli.config.BASE_DIR", temp_dir)
    monkeypatch.setattr("codeflow_cli.config.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("codeflow_cli.config.STATE_FILE", state_file)
    monkeypatch.setattr("codeflow_cli.storage.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("codeflow_cli.storage.STATE_FILE", state_file)

    return ProjectManager()


@pytest.fixture
def temp_graph_store(temp_dir: Path) -> Generator[GraphStore, None, None]:
    """Create a GraphStore with temporary storage."""
    project_dir = temp_dir / "test_project"
    project_dir.mkdir(parents=True, exist_ok=True)
    store = GraphStore(project_dir)
    yield store
    store.close()


@pytest.fixture
def sample_store(temp_graph_store: GraphStore, sample_snapshot: dict) -> GraphStore:
    """GraphStore populated from the sample snapshot."""
    temp_graph_store.import_snapshot(sample_snapshot)
    return temp_graph_store
