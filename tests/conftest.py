"""Common test fixtures for the Memento note store."""

import tempfile
from pathlib import Path

import pytest

from memento.config import config
from memento.observability import metrics
from memento.services.note_service import NoteService
from memento.storage.note_repository import NoteRepository
from memento.storage.persistence import PersistenceController
from memento.storage.tag_repository import TagRepository


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and logs."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as log_dir:
            yield Path(db_dir), Path(log_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, log_dir = temp_dirs
    monkeypatch.setattr(config, "base_dir", db_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_memento.db")
    monkeypatch.setattr(config, "log_dir", log_dir)
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "debug_mode", False)
    monkeypatch.setattr(config, "preview_sample_count", 10)
    yield config


@pytest.fixture
def store(test_config):
    """An empty in-memory store."""
    controller = PersistenceController(test_config, in_memory=True)
    yield controller
    controller.close()


@pytest.fixture
def file_store(test_config):
    """An empty store backed by a file in a temporary directory."""
    controller = PersistenceController(test_config)
    yield controller
    controller.close()


@pytest.fixture
def note_repository(store):
    """Create a test note repository."""
    yield NoteRepository(store.session_factory)


@pytest.fixture
def tag_repository(note_repository):
    """Tag repository sharing the note repository's garbage collector."""
    yield TagRepository(
        note_repository.session_factory, tag_collector=note_repository.tag_collector
    )


@pytest.fixture
def note_service(note_repository, tag_repository):
    """Create a test NoteService."""
    yield NoteService(repository=note_repository, tag_repository=tag_repository)


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Keep the process-wide store and metrics from leaking between tests."""
    metrics.reset()
    yield
    PersistenceController.reset_shared()
    metrics.reset()
