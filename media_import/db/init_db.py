import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncEngine

from media_import.core.config import get_settings
from media_import.db.models import Base
from media_import.db.session import engine

logger = logging.getLogger(__name__)


async def init_models(db_engine: AsyncEngine, *, drop_existing: bool = False) -> None:
    """Create the import tables, optionally dropping them first."""

    async with db_engine.begin() as conn:
        if drop_existing:
            logger.warning("Dropping existing import tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


if __name__ == "__main__":
    logging.basicConfig(level=get_settings().log_level)
    asyncio.run(init_models(engine, drop_existing="--drop" in sys.argv[1:]))
