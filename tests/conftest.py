"""Shared pytest fixtures for the reporting test suite.

Provides:
- anyio_backend: run async tests on asyncio only
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- analytics_tables: raw projects / carbon_credits / transactions /
  monitoring_areas / project_metrics tables owned by other services
- client: AsyncClient with dependency overrides for DB-backed testing
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.session import Base, get_async_session
import src.db.tables  # noqa: F401 - register ORM models on Base.metadata

ANALYTICS_DDL = (
    "CREATE TABLE projects (id TEXT PRIMARY KEY, name TEXT, status TEXT, "
    "methodology TEXT, region TEXT, total_area_hectares REAL, "
    "estimated_credits REAL, created_at TIMESTAMP)",
    "CREATE TABLE carbon_credits (id TEXT PRIMARY KEY, project_id TEXT, "
    "quantity REAL, vintage_year INTEGER, status TEXT, price_per_credit REAL, "
    "issued_at TIMESTAMP, created_at TIMESTAMP)",
    "CREATE TABLE transactions (id TEXT PRIMARY KEY, type TEXT, amount REAL, "
    "currency TEXT, status TEXT, created_at TIMESTAMP)",
    "CREATE TABLE monitoring_areas (id TEXT PRIMARY KEY, project_id TEXT, "
    "is_active BOOLEAN)",
    "CREATE TABLE project_metrics (time TIMESTAMP, project_id TEXT, "
    "metric_name TEXT, value REAL)",
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed; it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
async def analytics_tables(db_session):
    """Create the external analytical tables inside the test transaction."""
    for ddl in ANALYTICS_DDL:
        await db_session.execute(text(ddl))
    return db_session


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "objects"


@pytest.fixture
async def client(db_session, storage_root):
    """AsyncClient with the session and artifact storage overridden."""
    from src.api.dependencies import get_artifact_storage
    from src.api.main import app
    from src.reporting.storage import ArtifactStorage

    async def _override_session():
        yield db_session

    async def _override_storage():
        return ArtifactStorage(storage_root)

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_artifact_storage] = _override_storage

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
