from typing import AsyncGenerator
import logging
from models import Base
from config.settings import settings
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


# Convert sync URL to async URL: mysql+pymysql:// -> mysql+aiomysql://
# Note: Can't use simple replace() because 'aiomysql://' contains 'mysql://' as substring
def _convert_to_async_url(url: str) -> str:
    """Convert a sync database URL to its async driver equivalent."""
    if url.startswith('mysql+pymysql://'):
        return 'mysql+aiomysql://' + url[len('mysql+pymysql://'):]
    elif url.startswith('mysql://'):
        return 'mysql+aiomysql://' + url[len('mysql://'):]
    elif url.startswith('sqlite://') and not url.startswith('sqlite+aiosqlite://'):
        return 'sqlite+aiosqlite://' + url[len('sqlite://'):]
    else:
        return url


def _engine_kwargs(url: str) -> dict:
    if url.startswith('sqlite'):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # An in-memory database only exists on one connection
        if ':memory:' in url or url.rstrip('/').endswith('sqlite+aiosqlite:'):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


ASYNC_DATABASE_URL = _convert_to_async_url(settings.DATABASE_URL)

async_engine = create_async_engine(
    ASYNC_DATABASE_URL,
    echo=False,
    **_engine_kwargs(ASYNC_DATABASE_URL),
)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides an ASYNC database session.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_async_db)):
            result = await db.execute(select(Item))
            return result.scalars().all()
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_async_db():
    """Create any missing tables."""
    logger.info("Initializing database (async)...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized successfully")


async def drop_async_db():
    """Drop all tables. Used by the test suite between runs."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
