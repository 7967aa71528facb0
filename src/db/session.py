"""Database engine and request sessions for the reporting service.

The same engine serves the service's own tables (definitions, executions,
widgets) and the analytical tables reports read from. Report queries can
scan a lot of rows, so on PostgreSQL every connection carries a
server-side ``statement_timeout``.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.config.settings import Environment, LogLevel, get_settings


class Base(DeclarativeBase):
    """Declarative base of the reporting tables."""


def build_engine(
    url: str,
    *,
    pool_size: int = 10,
    statement_timeout_ms: int = 0,
    echo: bool = False,
) -> AsyncEngine:
    """Create the async engine. Pool and timeout options apply to asyncpg only."""
    options: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if make_url(url).get_driver_name() == "asyncpg":
        options["pool_size"] = pool_size
        if statement_timeout_ms > 0:
            options["connect_args"] = {
                "server_settings": {"statement_timeout": str(statement_timeout_ms)},
            }
    return create_async_engine(url, **options)


_settings = get_settings()

engine = build_engine(
    _settings.DATABASE_URL,
    pool_size=_settings.DATABASE_POOL_SIZE,
    statement_timeout_ms=_settings.REPORT_QUERY_TIMEOUT_MS,
    echo=(_settings.ENVIRONMENT == Environment.DEV and _settings.LOG_LEVEL == LogLevel.DEBUG),
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: one commit on success, rollback on error.

    An execution's status transitions and the artifact metadata are
    written through this session, so they become visible together.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
