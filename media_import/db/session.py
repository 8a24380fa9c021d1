from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from media_import.core.config import Settings, get_settings


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create a SQLAlchemy async engine from settings."""

    settings = settings or get_settings()
    return create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)


engine = create_engine()
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)

