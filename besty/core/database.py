from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from besty.core.config import Settings, settings as default_settings
from loguru import logger
import asyncio
from typing import Optional

Base = declarative_base()

async_engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def build_engine(database_url: str, settings: Settings = default_settings) -> AsyncEngine:
    """Create the async engine. SQLite has no connection pool to size."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=settings.DATABASE_ECHO_SQL)
    return create_async_engine(
        database_url,
        echo=settings.DATABASE_ECHO_SQL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_pre_ping=True  # Ensures connections are alive
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        autoflush=False,
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False  # Prevents objects from expiring after commit
    )


async def create_tables(engine: AsyncEngine) -> None:
    # Import the ORM models so they register on Base.metadata
    import besty.models.user  # noqa: F401
    import besty.models.auth_token  # noqa: F401
    import besty.models.persona  # noqa: F401
    import besty.models.conversation  # noqa: F401
    import besty.models.message  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(settings: Settings = default_settings) -> async_sessionmaker:
    """
    Initializes the database engine and creates tables if they don't exist.
    Retries the connection while the database container is still starting.
    """
    global async_engine, AsyncSessionLocal
    if AsyncSessionLocal is not None:
        logger.info("Database engine already initialized.")
        return AsyncSessionLocal

    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not configured.")

    max_retries = settings.DATABASE_CONNECT_RETRIES
    retry_delay = settings.DATABASE_RETRY_DELAY

    for i in range(max_retries):
        engine = build_engine(settings.DATABASE_URL, settings)
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            await create_tables(engine)
            async_engine = engine
            AsyncSessionLocal = build_sessionmaker(engine)
            logger.info("Database tables initialized successfully (or already existed).")
            return AsyncSessionLocal
        except Exception as e:
            await engine.dispose()
            logger.error(f"Failed to connect to database or create tables (Attempt {i+1}/{max_retries}): {e}")
            if i < max_retries - 1:
                logger.info(f"Retrying database connection in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
            else:
                logger.critical("Maximum database connection retries reached. Exiting startup.")
                raise
    raise RuntimeError("Database could not be initialized.")


async def dispose_db():
    """Disposes the database engine connections."""
    global async_engine, AsyncSessionLocal
    if async_engine:
        await async_engine.dispose()
        logger.info("Database engine connections disposed.")
    async_engine = None
    AsyncSessionLocal = None
