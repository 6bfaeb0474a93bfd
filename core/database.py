"""Async SQLAlchemy database engine and session management.

Provides:
- Connection pooling (configurable pool_size/max_overflow)
- FastAPI dependency injection via get_session()
- Automatic session lifecycle (commit on success, rollback on error)
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.settings import DATABASE_URL, ECHO_SQL, MAX_OVERFLOW, POOL_SIZE

# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------

_engine_options = {"echo": ECHO_SQL, "pool_pre_ping": True}
if not DATABASE_URL.startswith("sqlite"):
    _engine_options.update(pool_size=POOL_SIZE, max_overflow=MAX_OVERFLOW)

engine = create_async_engine(DATABASE_URL, **_engine_options)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session with automatic commit/rollback.

    Usage in FastAPI routes::

        @router.get("/orders")
        async def list_orders(session: AsyncSession = Depends(get_session)):
            result = await session.execute(select(Order))
            return result.scalars().all()
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Lifecycle hooks
# ---------------------------------------------------------------------------

async def init_db() -> None:
    """Create tables from models (dev/test only)."""
    from core.models.base import Base
    import core.resilience.idempotency  # noqa: F401
    import verticals.salon.models.db_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the connection pool on shutdown."""
    await engine.dispose()
