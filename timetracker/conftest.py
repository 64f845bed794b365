import sqlite3
from collections.abc import Generator
from pathlib import Path

import bcrypt
import pytest
from fastapi.testclient import TestClient

from timetracker import cache, settings, sync
from timetracker.auth import login_limiter, require_user
from timetracker.db import create_connection, get_db
from timetracker.schema import SCHEMA

ADMIN_PASSWORD = "correct horse battery staple"


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch):
    """
    Points every file location at a temporary directory and resets the
    in-memory state that survives between requests.
    """
    monkeypatch.setattr(settings, "DB_PATH", str(tmp_path / "test_function.sqlite"))
    monkeypatch.setattr(settings, "CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "SECRETS_DIR", tmp_path / "secrets")
    monkeypatch.setattr(settings, "JIRA_BASE_URL", None)
    for name in ("TOGGL_API_TOKEN", "TEMPO_API_TOKEN", "JWT_SECRET", "ADMIN_PASSWORD_HASH"):
        monkeypatch.delenv(name, raising=False)

    login_limiter.reset()
    sync.clear_providers()
    cache.clear()
    yield
    sync.clear_providers()
    cache.clear()


@pytest.fixture
def test_db() -> Generator[sqlite3.Connection]:
    """
    A temporary, isolated database for a single test function.
    - It lives at settings.DB_PATH, so code that opens its own connection
      (provider syncs, status counts) sees the same data.
    - It initializes the schema directly and yields a connection.
    - `tmp_path` handles file deletion.
    """
    conn = create_connection()
    conn.executescript(SCHEMA)
    conn.commit()

    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def client(test_db):
    """
    A TestClient whose requests share the `test_db` connection and are
    treated as authenticated.
    """
    from timetracker.main import app

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[require_user] = lambda: {"user_id": 1, "role": "admin", "type": "access"}

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_env(monkeypatch):
    """Configures a JWT secret and the admin password hash through the environment."""
    password_hash = bcrypt.hashpw(ADMIN_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4))
    monkeypatch.setenv("JWT_SECRET", "test-secret-that-is-at-least-32-characters")
    monkeypatch.setenv("ADMIN_PASSWORD_HASH", password_hash.decode("utf-8"))
    monkeypatch.setattr(settings, "ADMIN_USER", "admin")


@pytest.fixture
def anon_client(test_db, auth_env):
    """A TestClient with the real auth dependency in place."""
    from timetracker.main import app

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    yield TestClient(app)

    app.dependency_overrides.clear()
