import pytest
from fastapi.testclient import TestClient

from app.core.config import ServerConfig, UploadConfig
from app.core.database import get_db, init_database, seed_test_data
from app.main import app


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the app at a fresh seeded database for each test."""

    path = tmp_path / "shuro_test.db"
    monkeypatch.setattr(ServerConfig, "DATABASE_PATH", str(path))
    monkeypatch.setattr(UploadConfig, "UPLOAD_DIR", str(tmp_path / "uploads"))
    init_database()
    seed_test_data()
    return path


@pytest.fixture
def api_client(db_path):
    return TestClient(app)


def _login(client, path, email, password):
    response = client.post(path, json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["token"]


@pytest.fixture
def admin_token(api_client):
    return _login(api_client, "/auth/staff/login", "admin@example.com", "admin1234")


@pytest.fixture
def manager_token(api_client):
    return _login(api_client, "/auth/staff/login", "manager@example.com", "manager1234")


@pytest.fixture
def staff_token(api_client):
    return _login(api_client, "/auth/staff/login", "staff@example.com", "staff1234")


@pytest.fixture
def client_token(api_client):
    return _login(api_client, "/auth/client/login", "client@example.com", "client1234")


@pytest.fixture
def client_ids(db_path):
    """Seeded client ids keyed by client number (C001, C002, C003)."""

    with get_db() as conn:
        rows = conn.execute("SELECT id, client_number FROM clients").fetchall()
    return {row['client_number']: row['id'] for row in rows}
