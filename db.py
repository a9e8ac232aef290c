# ===============================================================
# db.py (async engine, sessions, table bootstrap)
# ===============================================================
import os
import logging
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
)
from sqlalchemy.orm import sessionmaker
from sqlalchemy import text

# Import Base and models cleanly (registers every table on Base.metadata)
from base import Base
import models  # noqa: F401

logger = logging.getLogger(__name__)

# -------------------------------------------------
# Database URL setup
# -------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("❌ DATABASE_URL not set in environment variables")


def normalize_database_url(url: str) -> str:
    """Ensure the asyncpg driver is used for Postgres URLs."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = normalize_database_url(DATABASE_URL)


# -------------------------------------------------
# Engine & Async Session Factory
# -------------------------------------------------
def make_engine(url: str, **kwargs):
    return create_async_engine(
        normalize_database_url(url),
        echo=os.getenv("SQL_ECHO", "false").lower() == "true",  # enable SQL logging if needed
        pool_pre_ping=True,     # checks if connection is alive
        pool_recycle=1800,      # recycle connections every 30 mins
        **kwargs,
    )


def make_sessionmaker(bind):
    return sessionmaker(
        bind=bind,
        expire_on_commit=False,
        class_=AsyncSession,
    )


engine = make_engine(DATABASE_URL)

# This is the async session factory the whole app should import
async_sessionmaker = make_sessionmaker(engine)

# -------------------------------------------------
# FastAPI Dependencies
# -------------------------------------------------
async def get_session() -> AsyncSession:
    """FastAPI database session dependency."""
    async with async_sessionmaker() as session:
        yield session


@asynccontextmanager
async def get_async_session():
    """Use in background tasks or outside FastAPI context."""
    async with async_sessionmaker() as session:
        yield session

# -------------------------------------------------
# Database Initialization (development only)
# -------------------------------------------------
async def init_db(bind=None):
    """Create any missing tables (AUTO_CREATE_TABLES and tests)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Raffle tables ensured")

# -------------------------------------------------
# Health Check Utility
# -------------------------------------------------
async def test_connection(session: AsyncSession) -> bool:
    """Quick check if DB is reachable."""
    try:
        await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        return False
