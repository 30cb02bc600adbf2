"""Async database engine and session factory for the message store."""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    In-memory SQLite needs a single shared connection, otherwise every
    checkout would see an empty database.
    """
    if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the message gateway."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Process-wide engine built from settings."""
    global _engine
    if _engine is None:
        _engine = create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Process-wide session factory bound to ``get_engine()``."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create the ``chat_messages`` and ``profiles`` tables if they do not exist."""
    from app.models.message import ChatMessage  # noqa: F401  (registers the table)
    from app.models.profile import UserProfile  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database schema ready")


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
