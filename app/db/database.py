"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import Numeric
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def engine_options(url: str, **pool_options) -> dict:
    """Keyword arguments for create_async_engine.

    Pool sizing only applies to server databases; SQLite uses its own pool.
    """
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_options)
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()

# Money columns. Prices and remittances are stored at cent precision,
# accruals keep six decimals and are rounded only for display.
Money = Numeric(14, 2)
AccrualAmount = Numeric(18, 6)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db() -> AsyncSession:
    """Request-scoped session; services commit or roll back themselves"""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def get_task_session():
    """
    Fresh engine and session for Celery tasks.

    Each task runs on its own event loop, so the module-level engine
    (bound to the API loop) cannot be reused there.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        **engine_options(settings.DATABASE_URL, pool_size=2, max_overflow=3),
    )
    task_session_maker = async_sessionmaker(bind=task_engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with task_session_maker() as session:
            yield session
    finally:
        await task_engine.dispose()
