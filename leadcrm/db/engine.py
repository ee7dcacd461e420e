"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is configured, provides:
- async engine for PostgreSQL via asyncpg
- async session factory for request-scoped sessions (see api.dependencies)
- FastAPI lifespan hook for startup/shutdown
- ``store_errors()``, which turns driver failures into StoreError /
  StoreUnavailable so services never see SQLAlchemy exceptions

When DATABASE_URL is None (no database configured), engine and factory
are None and the app falls back to the in-memory store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from leadcrm.core.config import SETTINGS
from leadcrm.services.errors import StoreError, StoreUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


# --- Engine and session factory (None when no DATABASE_URL) ---

if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
else:
    engine = None
    async_session_factory = None


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate driver exceptions raised inside the block.

    Constraint violations become StoreError; connection-level failures
    become StoreUnavailable (the only retry-eligible kind).
    """
    try:
        yield
    except IntegrityError as exc:
        raise StoreError(str(exc.orig)) from exc
    except OperationalError as exc:
        raise StoreUnavailable(str(exc.orig)) from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise StoreUnavailable(str(exc.orig)) from exc
        raise StoreError(str(exc.orig)) from exc


@asynccontextmanager
async def lifespan_db():
    """Startup/shutdown hook for the database engine.

    Call from FastAPI's lifespan context manager.
    """
    if engine is None:
        logger.info("No DATABASE_URL configured, using in-memory store")
        yield
        return

    logger.info("Database engine created: %s", engine.url.render_as_string())
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
