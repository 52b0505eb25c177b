"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Each request gets one session and one transaction: every invoice mutation a
request makes is committed together or not at all.
"""

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from billing.core.config import settings
from billing.core.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool options for the configured backend (SQLite has no sized pool)."""
    options: Dict[str, Any] = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        # WHY: pool_size and max_overflow bound concurrent connections to Postgres
        options.update(pool_size=10, max_overflow=20)
    return options


engine = create_async_engine(
    settings.async_database_url,
    **_engine_options(settings.async_database_url),
)

# WHY: expire_on_commit=False prevents lazy-loading issues after commit.
# autoflush=False gives the services explicit control over when the
# version-guarded UPDATE is issued.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    Commits when the request handler returns, rolls back on any error.
    Connectivity failures surface as DatabaseConnectionError (503) so the
    caller knows the whole operation can be retried.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except (OperationalError, InterfaceError) as e:
            await session.rollback()
            logger.error("Database unavailable: %s", e)
            raise DatabaseConnectionError(message="Database is unavailable") from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
