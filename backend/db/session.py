"""
RetailRules Database Session Management

Async SQLAlchemy engine factory and the transactional scope every
rule-engine operation runs in.
"""

from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.errors import TransactionFailure

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


def build_engine(database_url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create an async engine from settings (or an explicit URL).

    Engines are created per invocation: Celery tasks and CLI runs each drive
    their own event loop, and asyncpg pools cannot cross loops.
    """
    from core.config import get_settings

    settings = get_settings()
    url = database_url or settings.database_url
    kwargs = {"echo": settings.database_echo if echo is None else echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=5)
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def atomic(db: AsyncSession, operation: str):
    """
    Run a block as one transaction.

    Commits when the block exits cleanly; rolls back on any exception.
    Store-level errors are re-raised as TransactionFailure so callers see
    one failure type for "nothing was written".
    """
    try:
        yield db
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("transaction.failed", operation=operation, error=str(exc))
        raise TransactionFailure(operation, exc) from exc
    except BaseException:
        await db.rollback()
        raise
