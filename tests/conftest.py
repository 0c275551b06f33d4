import json
import os
from collections.abc import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.config.settings import Settings, get_settings
from backoffice.infra.database import Base, Database, get_database
from backoffice.main import create_app

# Import models to ensure they're registered
from backoffice.v1.costing import models as costing_models  # noqa: F401
from backoffice.v1.crm import models as crm_models  # noqa: F401
from backoffice.v1.infra.jobs import models as job_models  # noqa: F401
from backoffice.v1.infra.jobs.store import JobStore
from backoffice.v1.quickbooks import models as qbo_models  # noqa: F401
from backoffice.v1.quickbooks.client import QuickBooksClient
from backoffice.v1.quickbooks.oauth import QboTokenResponse

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_REALM_ID = "realm-123"


def _test_database_url(tmp_path) -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url and "postgresql" in database_url:
        # Use the CI PostgreSQL database
        return database_url
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings tuned for fast, deterministic tests."""
    return Settings(
        database_url=_test_database_url(tmp_path),
        worker_id="test-worker",
        worker_poll_interval_ms=50,
        worker_batch_size=10,
        worker_lease_ttl_s=300,
        worker_concurrency=1,
        worker_shutdown_grace_s=1.0,
        job_max_attempts=3,
        job_backoff_base_ms=1000,
        job_max_backoff_s=60,
        job_backoff_jitter=0.0,
        qbo_client_id="test-client-id",
        qbo_client_secret="test-client-secret",
        qbo_redirect_uri="http://localhost:8000/v1/quickbooks/callback",
        qbo_token_encryption_key=TEST_ENCRYPTION_KEY,
    )


@pytest.fixture
async def database(test_settings) -> AsyncGenerator[Database, None]:
    """Database with a freshly created schema."""
    database = Database(test_settings)
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield database

    await database.close()


@pytest.fixture
def session_factory(database) -> async_sessionmaker[AsyncSession]:
    return database.SessionLocal


@pytest.fixture
def job_store(session_factory, test_settings) -> JobStore:
    return JobStore(session_factory, test_settings.job_max_attempts)


@pytest.fixture
def app(database, test_settings):
    """Create a test FastAPI application bound to the test database."""
    app = create_app()

    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_settings] = lambda: test_settings

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class FakeQuickBooks:
    """In-memory stand-in for the Intuit OAuth and accounting endpoints."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.created: list[dict] = []
        self.next_id = 100
        self.create_status: int = 200
        self.create_body: dict | None = None
        self.failing_job_creates = 0
        self.token_status: int = 200
        self.token_body = {
            "access_token": "refreshed-access-token",
            "refresh_token": "refreshed-refresh-token",
            "expires_in": 3600,
            "x_refresh_token_expires_in": 8726400,
            "token_type": "bearer",
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/oauth2/v1/tokens/bearer"):
            return httpx.Response(self.token_status, json=self.token_body)

        if request.method == "POST" and path.endswith("/customer"):
            if self.create_status >= 400:
                return httpx.Response(self.create_status, text="Service Unavailable")
            if self.create_body is not None:
                return httpx.Response(200, json=self.create_body)

            body = json.loads(request.content)
            if body.get("Job") and self.failing_job_creates > 0:
                self.failing_job_creates -= 1
                return httpx.Response(503, text="Service Unavailable")
            self.next_id += 1
            remote = {"Id": str(self.next_id), "SyncToken": "0", **body}
            self.created.append(remote)
            return httpx.Response(200, json={"Customer": remote})

        if request.method == "GET" and "/customer/" in path:
            return httpx.Response(200, json={"Customer": {"Id": path.rsplit("/", 1)[-1]}})

        return httpx.Response(404, json={"Fault": {"type": "NotFound"}})

    def requests_to(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]


@pytest.fixture
def fake_qbo() -> FakeQuickBooks:
    return FakeQuickBooks()


@pytest.fixture
async def http_client(fake_qbo) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_qbo.handler)) as client:
        yield client


@pytest.fixture
def qbo_client(test_settings, session_factory, http_client) -> QuickBooksClient:
    return QuickBooksClient(test_settings, session_factory, http_client)


@pytest.fixture
def connect_realm(qbo_client):
    """Store a QuickBooks connection whose access token expires in ``expires_in`` seconds."""

    async def _connect(realm_id: str = TEST_REALM_ID, expires_in: int = 3600):
        return await qbo_client.store_connection(
            realm_id,
            QboTokenResponse(
                access_token="stored-access-token",
                refresh_token="stored-refresh-token",
                expires_in=expires_in,
            ),
        )

    return _connect
