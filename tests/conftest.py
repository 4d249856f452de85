"""Pytest configuration and fixtures."""

import os
import tempfile

import pytest

# Keep the default database out of the working directory before app modules import settings
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'message_board_test.db')}"
)
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def database_url(tmp_path):
    """SQLite URL pointing at a fresh file for this test."""
    return f"sqlite:///{tmp_path / 'messages.db'}"


@pytest.fixture
def store(database_url):
    """Open message store, closed after the test."""
    from message_board.storage import MessageStore

    message_store = MessageStore(database_url).open()
    yield message_store
    message_store.close()


@pytest.fixture
def client(database_url, monkeypatch):
    """FastAPI test client running startup/shutdown against a temp database."""
    from fastapi.testclient import TestClient
    from message_board.config import settings
    from message_board.main import app
    from message_board.metrics import reset_metrics

    monkeypatch.setattr(settings, "DATABASE_URL", database_url)
    reset_metrics()

    with TestClient(app) as test_client:
        yield test_client
