"""
Database session configuration.

Async engine and session factory for the ledger database (PostgreSQL via
asyncpg in production). Sessions keep loaded objects after commit so
responses can be built from them without another round trip.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from pos_backend.app.core.config import settings


def engine_options(database_url: str) -> dict:
    """Pool sizing only applies to server databases; SQLite keeps driver defaults."""
    options = {"echo": settings.db_echo}
    if not database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """
    FastAPI dependency for database sessions.

    A request that fails part-way leaves no open transaction behind.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
