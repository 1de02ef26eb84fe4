"""
Database Session Management and Configuration (async SQLAlchemy)
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

load_dotenv()
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./formdesk.db")
DB_ECHO = os.getenv("DB_ECHO", "False").lower() == "true"
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))


Base = declarative_base()


def _attach_query_logging(engine: AsyncEngine) -> None:
    """Log every statement with its duration, and failures with context"""
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before_cursor_execute(
        conn, cursor, statement, parameters, context, executemany
    ):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after_cursor_execute(
        conn, cursor, statement, parameters, context, executemany
    ):
        start = conn.info["query_start_time"].pop()
        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Executed query in {duration_ms:.1f}ms: {statement}")

    @event.listens_for(sync_engine, "handle_error")
    def _handle_error(exception_context):
        conn = exception_context.connection
        duration = "unknown"
        if conn is not None and conn.info.get("query_start_time"):
            start = conn.info["query_start_time"].pop()
            duration = f"{(time.perf_counter() - start) * 1000:.1f}ms"
        logger.error(
            f"Query failed after {duration}: {exception_context.statement} "
            f"- {exception_context.original_exception}"
        )


def create_engine(
    url: str = DATABASE_URL, echo: bool = DB_ECHO, **kwargs
) -> AsyncEngine:
    """Create an async engine with query logging attached"""
    options = {"echo": echo, "future": True, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_size=DB_POOL_SIZE, pool_timeout=DB_POOL_TIMEOUT)
    options.update(kwargs)

    engine = create_async_engine(url, **options)
    _attach_query_logging(engine)
    return engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


engine = create_engine()
SessionLocal = create_session_factory(engine)


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker = SessionLocal,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Unit of work: begin, commit on success, roll back on any exception.
    The session is closed on every exit path.
    """
    async with session_factory() as session:
        async with session.begin():
            yield session


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create tables (development/bootstrap convenience)"""
    from formdesk.models.api_key_model import ApiKey  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created successfully")


async def close_db(bind: AsyncEngine = engine) -> None:
    """Close database connection pool"""
    await bind.dispose()
