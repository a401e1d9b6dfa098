"""
Database engine and session factory.

The attempt ledger is the only shared mutable resource; every ledger
operation opens its own short-lived session from AsyncSessionLocal.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from courier.config import settings


def make_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine for the given URL (defaults to DATABASE_URL)."""
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        **kwargs
    )


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False)


engine = make_engine()
AsyncSessionLocal = make_session_factory(engine)


async def ping(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
