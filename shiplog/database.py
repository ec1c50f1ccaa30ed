import asyncio
import logging
import os

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from shiplog.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Base class for models
Base = declarative_base()

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _sqlite_engine() -> AsyncEngine:
    is_memory = ":memory:" in settings.database_url
    connect_args = {"check_same_thread": False}
    engine_kwargs = dict(echo=settings.app_debug, connect_args=connect_args)
    if is_memory:
        # All connections must share one in-memory database.
        engine_kwargs["poolclass"] = StaticPool
    else:
        os.makedirs("data", exist_ok=True)
        connect_args["timeout"] = 30

    engine = create_async_engine(settings.database_url, **engine_kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not is_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    logger.info("Using SQLite database at %s", settings.database_url)
    return engine


def _postgres_engine() -> AsyncEngine:
    logger.info(f"Connecting to PostgreSQL at {settings.postgres_host}:{settings.postgres_port}")
    return create_async_engine(
        settings.database_url,
        echo=settings.app_debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
        connect_args={
            "timeout": settings.db_connect_timeout_seconds,
            "command_timeout": settings.db_command_timeout_seconds,
        },
    )


def get_engine() -> AsyncEngine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        _engine = _sqlite_engine() if settings.use_sqlite else _postgres_engine()
    return _engine


def AsyncSessionLocal() -> AsyncSession:
    """Open a new async session.

    Usage: async with AsyncSessionLocal() as session: ...
    """
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_maker()


async def get_db():
    """FastAPI dependency yielding a session that commits on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create tables, retrying while the database comes up.

    Production deployments run Alembic migrations; this covers local
    development and tests.
    """
    # Register every model on Base.metadata
    import shiplog.models  # noqa: F401

    max_retries = 5
    base_delay = 2

    for attempt in range(max_retries):
        try:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables initialized")
            return
        except Exception as e:
            if attempt < max_retries - 1:
                delay = base_delay * (2 ** attempt)
                logger.warning(f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {delay}s...")
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database initialization failed after {max_retries} attempts: {e}")
                raise


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None
