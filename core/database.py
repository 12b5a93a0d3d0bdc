"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.dialects import postgresql, sqlite
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development" and settings.LOG_LEVEL.upper() == "DEBUG",
    poolclass=NullPool,  # For async, connection pooling handled differently
    future=True
)

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


def upsert_insert(session: AsyncSession, model):
    """
    Return an INSERT construct that supports ON CONFLICT for the session's dialect.

    Production runs on PostgreSQL; the test-suite runs on SQLite. Both
    dialects expose the same ``on_conflict_do_update`` / ``excluded`` API.
    """
    dialect = session.get_bind().dialect.name

    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)

    raise NotImplementedError(f"Upsert is not supported for dialect: {dialect}")
