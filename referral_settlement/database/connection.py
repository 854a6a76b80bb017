"""
Engine and session wiring for the settlement store.

One process-wide engine backs every request session. ``build_engine`` also
serves SQLite URLs, where a single shared connection stands in for the pool.
"""
from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from referral_settlement.config import Settings, get_settings
from referral_settlement.database.models import Base

logger = structlog.get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create an engine for ``settings.database_url``.

    Server databases get the bounded pool (``database_pool_size`` plus
    ``database_max_overflow``) with connections recycled after
    ``database_pool_recycle`` seconds. SQLite gets one connection shared by
    all sessions so an in-memory database survives between them.
    """
    url = settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_async_engine(
        url,
        echo=settings.database_echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.database_pool_recycle,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Orders and users stay readable after commit; routes serialize them then.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, Any]:
    """
    Request-scoped session.

    Checkout and settlement commit their own units of work; whatever is still
    pending when the route returns is committed here, and any exception
    discards it.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the users, products, links, orders and order_items tables if missing."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_schema_ready", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
