from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from api.src.config import get_settings

settings = get_settings()

def async_database_url(url: str) -> str:
    """Database URL with the async driver selected (asyncpg for PostgreSQL)."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url

def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }

_url = async_database_url(settings.database_url)
engine = create_async_engine(_url, echo=settings.database_echo, **engine_options(_url))

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()

async def get_db():
    """Request-scoped session; uncommitted work is rolled back."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

async def init_db():
    # Register every table on Base before creating them
    from api.src.models import project  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def close_db():
    await engine.dispose()
