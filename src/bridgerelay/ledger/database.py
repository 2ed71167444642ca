"""Async engine and sessions for the relayer ledger.

One engine per process, created on first use from DATABASE_URL (or the URL
passed to configure_database). Sessions come from get_db(), which commits
on a clean exit and rolls back on any exception.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bridgerelay.config import get_settings
from bridgerelay.ledger.models import Base

_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None
_url_override: Optional[str] = None


def configure_database(database_url: str) -> None:
    """Point the ledger at another database (tests, tools).

    Call close_db() first if an engine is already open.
    """
    global _engine, _sessions, _url_override
    _url_override = database_url
    _engine = None
    _sessions = None


def database_url() -> str:
    """The effective async database URL."""
    url = _url_override or get_settings().database_url
    if url.startswith("sqlite:///"):
        # Plain sqlite URLs get the async driver
        url = "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    return url


def _sqlite_connect_args(url: str) -> dict:
    path = url.split(":///", 1)[-1]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    # Concurrent writers wait on the file lock instead of failing at once
    return {"timeout": 30}


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        url = database_url()
        _engine = create_async_engine(
            url,
            echo=settings.debug and not settings.is_production,
            connect_args=_sqlite_connect_args(url) if url.startswith("sqlite") else {},
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _sessions


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Transactional session scope."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing ledger tables."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine; the next get_db() opens a new one."""
    global _engine, _sessions
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None
