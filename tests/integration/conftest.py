"""Integration test fixtures: in-memory app, scripted platform API, local object storage."""

import hashlib
import json
import os
import tempfile

import httpx
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_WORKDIR = tempfile.mkdtemp(prefix="dbvault-it-")

# Force test config BEFORE any app imports
os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_DIR"] = os.path.join(_WORKDIR, "logs")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_LOCAL_DIR"] = os.path.join(_WORKDIR, "objects")
os.environ["PLATFORM_ACCOUNT_ID"] = "acct-test"
os.environ["PLATFORM_API_TOKEN"] = "token-test"
os.environ["EXPORT_POLL_INTERVAL_SECONDS"] = "0.01"
os.environ["INGEST_POLL_INTERVAL_SECONDS"] = "0.01"
os.environ["SCHEDULER_ENABLED"] = "false"

import dbvault.database as db_mod
import dbvault.dependencies as dep_mod
from dbvault.remote.client import PlatformClient

API_BASE = "https://platform.test/client/v4"
LIVE_DATABASE_ID = "db-live"
DUMP = b"CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT);\nINSERT INTO notes VALUES (1, 'hello');\n"


def _ok(result, **extra):
    return httpx.Response(200, json={"success": True, "result": result, "errors": [], **extra})


def platform_handler(request: httpx.Request) -> httpx.Response:
    """Minimal scripted version of the platform's export, import and query API."""
    url = str(request.url)
    if request.url.host == "dl.test":
        return httpx.Response(200, content=DUMP)
    if request.url.host == "upload.test":
        return httpx.Response(200, headers={"ETag": f'"{hashlib.md5(request.content).hexdigest()}"'})

    if url.endswith("/export"):
        return _ok({"at_bookmark": "bm-1", "signed_url": "https://dl.test/dump.sql"})
    if url.endswith("/import"):
        action = json.loads(request.content)["action"]
        if action == "init":
            return _ok({"upload_url": "https://upload.test/put", "filename": "dump.sql"})
        if action == "ingest":
            return _ok({"at_bookmark": "ingest-1", "num_queries": 2})
        return _ok({"success": True, "num_queries": 2})
    if url.endswith("/query"):
        sql = json.loads(request.content)["sql"]
        if sql.startswith("PRAGMA table_info"):
            rows = [
                {"cid": 0, "name": "id", "type": "INTEGER", "notnull": 0, "dflt_value": None, "pk": 1},
                {"cid": 1, "name": "body", "type": "TEXT", "notnull": 0, "dflt_value": None, "pk": 0},
            ]
        elif sql.startswith("SELECT * FROM"):
            rows = [{"id": 1, "body": "hello"}]
        else:
            rows = []
        return _ok([{"results": rows, "meta": {}}])
    if request.method == "GET" and url.split("?")[0].endswith("/d1/database"):
        return _ok([{"uuid": LIVE_DATABASE_ID}])
    return httpx.Response(404, json={"success": False, "errors": [{"message": "not found"}]})


def _reset_singletons():
    """Reset all module-level singletons so each test session starts clean."""
    db_mod._engine = None
    db_mod._session_factory = None
    dep_mod._config_instance = None
    dep_mod._job_store = None
    dep_mod._object_store = None
    dep_mod._object_store_ready = False
    dep_mod._platform_client = None
    dep_mod._webhook_dispatcher = None
    dep_mod._actor_registry = None
    dep_mod._catalog_service = None
    dep_mod._search_service = None
    dep_mod._schedule_service = None
    dep_mod._backup_scheduler = None


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_app():
    """Create test app with in-memory database (shared via StaticPool)."""
    _reset_singletons()

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Inject into database module BEFORE app import
    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    config = dep_mod.get_app_config()
    dep_mod._platform_client = PlatformClient(
        account_id=config.platform_account_id,
        api_token=config.platform_api_token,
        api_base=API_BASE,
        transport=httpx.MockTransport(platform_handler),
    )

    from dbvault.main import app
    from dbvault.models.base import Base

    # ASGITransport does not run the lifespan
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield app

    if dep_mod._actor_registry is not None:
        await dep_mod._actor_registry.shutdown(timeout=1.0)
    await engine.dispose()
    _reset_singletons()


@pytest_asyncio.fixture(loop_scope="session")
async def client(test_app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture(loop_scope="session")
async def wait_for_jobs(test_app):
    """Wait until every queued actor command has finished."""

    async def _wait(timeout: float = 5.0):
        assert await dep_mod.get_actor_registry().drain(timeout=timeout)
        await dep_mod.get_webhook_dispatcher().drain(timeout=timeout)

    return _wait


@pytest_asyncio.fixture(loop_scope="session")
async def object_store(test_app):
    return dep_mod.get_object_store()
