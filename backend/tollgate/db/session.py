"""Database engine and session factory."""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from tollgate.core.config import settings

# Adapter calls hold a connection for one short transaction each
POOL_SIZE = 10
MAX_OVERFLOW = POOL_SIZE

async_engine = create_async_engine(
    str(settings.SQLALCHEMY_ASYNC_DATABASE_URI),
    pool_size=POOL_SIZE,
    max_overflow=MAX_OVERFLOW,
    pool_pre_ping=True,
    pool_recycle=300,
    pool_timeout=30,
)

# Objects stay readable after commit, the adapter converts them to schemas afterwards
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine, autoflush=False, expire_on_commit=False
)
