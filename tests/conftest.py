"""
Pytest configuration and fixtures.

Provides shared fixtures for:
- A fresh subscriber database per test (SQLite file under tmp_path)
- FastAPI test client running the real lifespan against a temporary database
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from mailinglist.config import get_settings
from mailinglist.storage.database import EmailDatabase


@pytest_asyncio.fixture
async def email_db(tmp_path) -> EmailDatabase:
    """Initialized, empty subscriber database."""
    db = EmailDatabase(db_path=str(tmp_path / "list.db"))
    await db.initialize()
    yield db
    db.close()


@pytest.fixture
def api_db_path(tmp_path, monkeypatch) -> str:
    """Point the application settings at a temporary database file."""
    db_path = str(tmp_path / "api.db")
    monkeypatch.setattr(get_settings().database, "db", db_path)
    return db_path


@pytest.fixture
def app_client(api_db_path):
    """Test client with lifespan (opens and initializes the database)."""
    from mailinglist.main import app

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
