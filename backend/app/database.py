"""Database engine, session factory, base class and unit-of-work helper.

  - Base           → declarative base for every warehouse table
  - get_db()       → FastAPI dependency yielding an AsyncSession
  - transaction()  → scoped unit of work; commits on success, rolls back on
                     any exception, and joins an enclosing unit if one is
                     already open on the session
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

_pool_args = {} if settings.database_url.startswith("sqlite") else {
    "pool_size": 20,
    "max_overflow": 10,
}

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_pool_args,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Models for the warehouse schema."""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a session; commit whatever the route left pending."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Unit of work ────────────────────────────────────────────

@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run the block as one atomic unit.

    If the session has no open transaction, one is started here and is
    committed when the block exits normally or rolled back when it raises.
    If a transaction is already open (e.g. the assembler wrapping several
    lifecycle transitions), the block joins it and the outermost owner
    decides commit/rollback.
    """
    if db.in_transaction():
        yield db
        await db.flush()
        return

    async with db.begin():
        yield db
