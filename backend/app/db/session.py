from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from app.core.config import settings
from app.db.base import Base
import logging

# Initialize logger for this module
logger = logging.getLogger(__name__)

connect_args = {}

# aiosqlite connections are shared between the request handlers and the
# background sync tasks, so the same-thread check has to go
if "sqlite" in settings.DATABASE_URL:
    connect_args = {"check_same_thread": False}

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    connect_args=connect_args,
)

# Session factory for the sync history ledger. Sync tasks outlive requests,
# so they open their own sessions from here rather than using a request's.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,   # Keep SyncRun attributes readable after commit
    autoflush=False,
)


async def init_models() -> None:
    """
    Create missing tables on SQLite.

    Local and in-memory SQLite databases are never migrated with Alembic;
    any other database is expected to be at the Alembic head already.
    """
    if "sqlite" not in settings.DATABASE_URL:
        return
    import app.models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("SQLite tables ensured")
