"""
Pytest configuration and shared fixtures.

The app is pointed at a throwaway SQLite database, blob root and log
directory through environment variables, so these must be set before any
application module is imported.
"""

import os
import tempfile
import time
import uuid

_TMP_ROOT = tempfile.mkdtemp(prefix="agenthub_tests_")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_ROOT}/test.db")
os.environ.setdefault("BLOB_BACKEND", "local")
os.environ.setdefault("BLOB_LOCAL_ROOT", os.path.join(_TMP_ROOT, "blobs"))
os.environ.setdefault("BLOB_PUBLIC_BASE_URL", "http://testserver/api/files")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_ROOT, "logs"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")

import pytest  # noqa: E402
import requests  # noqa: E402

from tests.helpers import FakeStrategyLLM  # noqa: E402


# Test configuration - override via environment variables
TEST_BASE_URL = os.getenv("TEST_BASE_URL")


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end test against a running server"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# ═══════════════════════════════════════════════════════════════════════════
# APIClient - HTTP client for e2e flow tests
# ═══════════════════════════════════════════════════════════════════════════


class APIClient:
    """HTTP client wrapping requests.Session with auth helpers."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.token: str | None = None
        self.user_id: int | None = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _headers(self) -> dict:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def register(self, email: str, password: str) -> requests.Response:
        """POST /api/auth/register (JSON body)."""
        resp = self.session.post(
            self._url("/api/auth/register"),
            json={"email": email, "password": password},
        )
        if resp.status_code == 200:
            data = resp.json()
            self.token = data.get("access_token")
            self.user_id = data.get("user_id")
        return resp

    def login(self, email: str, password: str) -> requests.Response:
        """POST /api/auth/login (form-encoded, field name 'username')."""
        resp = self.session.post(
            self._url("/api/auth/login"),
            data={"username": email, "password": password},
        )
        if resp.status_code == 200:
            data = resp.json()
            self.token = data.get("access_token")
            self.user_id = data.get("user_id")
        return resp

    def get(self, path: str, **kwargs) -> requests.Response:
        return self.session.get(self._url(path), headers=self._headers(), **kwargs)

    def post(self, path: str, **kwargs) -> requests.Response:
        return self.session.post(self._url(path), headers=self._headers(), **kwargs)

    def patch(self, path: str, **kwargs) -> requests.Response:
        return self.session.patch(self._url(path), headers=self._headers(), **kwargs)

    def delete(self, path: str, **kwargs) -> requests.Response:
        return self.session.delete(self._url(path), headers=self._headers(), **kwargs)


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


def unique_email() -> str:
    ts = int(time.time())
    short_id = uuid.uuid4().hex[:6]
    return f"test_{ts}_{short_id}@test.example.com"


@pytest.fixture
def test_user_password():
    """Standard test password."""
    return "TestPass123!"


@pytest.fixture(scope="module")
def live_client():
    """Unauthenticated APIClient for a running server; skips without TEST_BASE_URL."""
    if not TEST_BASE_URL:
        pytest.skip("TEST_BASE_URL not set")
    return APIClient(TEST_BASE_URL)


@pytest.fixture
async def db():
    """Async DB session over freshly created tables."""
    from database import AsyncSessionLocal, async_engine, drop_async_db, init_async_db

    await init_async_db()
    async with AsyncSessionLocal() as session:
        yield session
    await drop_async_db()
    await async_engine.dispose()


@pytest.fixture
async def user(db):
    from services.user_service import UserService

    return await UserService(db).create_user(unique_email(), "TestPass123!", "Test User")


@pytest.fixture(autouse=True)
def reset_blob_backend(monkeypatch, tmp_path):
    """Each test gets its own local blob root."""
    from config.settings import settings
    from services import blob_service

    monkeypatch.setattr(settings, "BLOB_LOCAL_ROOT", str(tmp_path / "blobs"))
    monkeypatch.setattr(blob_service, "_blob_service", None)
    yield
    blob_service._blob_service = None


@pytest.fixture
def strategy_llm(monkeypatch):
    """Scripted replies for the selection and termination prompts."""
    fake = FakeStrategyLLM()
    monkeypatch.setattr("agents.group_chat.call_llm", fake)
    return fake


@pytest.fixture
def client():
    """In-process HTTP client over the FastAPI app with its own tables."""
    from fastapi.testclient import TestClient
    from database import async_engine, drop_async_db
    from main import app

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(drop_async_db)
        test_client.portal.call(async_engine.dispose)


@pytest.fixture
def auth_headers(client, test_user_password):
    """Register a fresh user through the API and return bearer headers."""
    resp = client.post(
        "/api/auth/register",
        json={"email": unique_email(), "password": test_user_password},
    )
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
