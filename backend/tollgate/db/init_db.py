"""Create the billing tables."""

from sqlalchemy.ext.asyncio import AsyncEngine

from tollgate.core.logging import logger
from tollgate.models import Base


async def init_db(engine: AsyncEngine) -> None:
    """Create all missing tables on the given engine.

    Existing tables are left alone, this is not a migration tool.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Ensured {len(Base.metadata.tables)} tables exist")
