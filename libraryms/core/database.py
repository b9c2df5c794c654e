# libraryms/core/database.py

import os
import ssl
from dotenv import load_dotenv
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from loguru import logger
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.pool import NullPool
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from libraryms.core.config import settings
from libraryms.core.errors import TransportError

# Table modules must be imported before create_all()
from libraryms.models import audit, blacklist, book, profile, transaction  # noqa: F401

# ----------------------------------------------------
# Load environment
# ----------------------------------------------------
load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL") or settings.DATABASE_URL

if not DATABASE_URL:
    raise RuntimeError("❌ DATABASE_URL is not set")


# ----------------------------------------------------
# SSL for Supabase Pooler
# ----------------------------------------------------
def make_ssl():
    ctx = ssl.create_default_context()
    if not settings.DB_SSL_VERIFY:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


def make_connect_args(url: str) -> dict:
    # AsyncPG SAFE Config (works with Supabase POOLER)
    if url.startswith("postgresql+asyncpg"):
        return {
            "ssl": make_ssl(),
            "statement_cache_size": 0,           # disable prepared statements
            "prepared_statement_name_func": None # prevent SQLAlchemy from naming statements
        }
    # local sqlite (tests, demos)
    if url.startswith("sqlite"):
        return {"timeout": 30}
    return {}


logger.info("🔄 Configuring Database ({})", DATABASE_URL.split("://", 1)[0])


# ----------------------------------------------------
# Engine (NO POOLING → Supabase pooler handles it)
# ----------------------------------------------------
engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    connect_args=make_connect_args(DATABASE_URL),
    pool_pre_ping=True,
    poolclass=NullPool,       # required for Pooler
)


# ----------------------------------------------------
# Sessions
# ----------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


# ----------------------------------------------------
# Create tables
# ----------------------------------------------------
async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def drop_db():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)


# ----------------------------------------------------
# Test Connection (SAFE)
# ----------------------------------------------------
async def test_connection():
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
        logger.debug("✅ DB Connection OK")


# ----------------------------------------------------
# Backend failures -> TransportError
# ----------------------------------------------------
@asynccontextmanager
async def backend_call(session: AsyncSession, action: str):
    """Roll back and re-raise any SQLAlchemy failure as TransportError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("{} failed: {}", action, exc)
        await session.rollback()
        raise TransportError(f"Failed to {action}. Please try again.") from exc
