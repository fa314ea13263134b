"""
API endpoint tests
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from api.dependencies import get_checkpoint_store, get_db
from api.main import app
from core.exceptions import CheckpointError
from models.base import RunStatus
from schemas.checkpoint import IngestionCheckpoint

START = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    session = AsyncMock()
    session.execute = AsyncMock(return_value=MagicMock())
    return session


@pytest.fixture
def client(db_session, memory_store):
    """Create test client with database and checkpoint store overrides"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_checkpoint_store] = lambda: memory_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def saved_checkpoint(memory_store) -> IngestionCheckpoint:
    checkpoint = IngestionCheckpoint.new(["Foundation", "SR Legacy"], 100, 50, START)
    checkpoint.processed_items = 50
    checkpoint.successful_inserts = 49
    checkpoint.skipped_duplicates = 1
    checkpoint.current_page = 2
    checkpoint.mark(RunStatus.RUNNING, START)
    memory_store.history.append(checkpoint.model_dump_json())
    return checkpoint


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"] == {"health": "/health", "status": "/status"}


def test_health_all_good(client, memory_store):
    saved_checkpoint(memory_store)

    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert data["checkpoint_readable"] is True
    assert data["last_checkpoint_update"].startswith("2024-01-15T10:00:00")


def test_health_without_checkpoint(client):
    data = client.get("/health").json()

    assert data["status"] == "healthy"
    assert data["last_checkpoint_update"] is None


def test_health_database_down(client, db_session):
    db_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

    data = client.get("/health").json()

    assert data["status"] == "unhealthy"
    assert data["database_connected"] is False


def test_health_checkpoint_unreadable(client, memory_store):
    memory_store.load = AsyncMock(side_effect=CheckpointError("Checkpoint file is corrupt"))

    data = client.get("/health").json()

    assert data["status"] == "degraded"
    assert data["checkpoint_readable"] is False


def test_status_without_checkpoint(client):
    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()
    assert data["checkpoint_exists"] is False
    assert data["progress"] is None


def test_status_reports_progress(client, memory_store):
    saved_checkpoint(memory_store)

    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()
    assert data["checkpoint_exists"] is True
    progress = data["progress"]
    assert progress["status"] == "running"
    assert progress["processed_items"] == 50
    assert progress["percent_complete"] == 50.0
    assert progress["current_data_type"] == "Foundation"
    assert progress["current_page"] == 2
    # Reading status never writes the checkpoint
    assert memory_store.saves == 1


def test_status_checkpoint_unreadable(client, memory_store):
    memory_store.load = AsyncMock(side_effect=CheckpointError("Checkpoint file is corrupt"))

    response = client.get("/status")

    assert response.status_code == 503
    assert "Checkpoint unreadable" in response.json()["detail"]
