"""Database connection management for the SQL registry.

Provides the async SQLAlchemy engine, sessions and the registry schema.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sqlalchemy as sa
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings

# =========================
# SQLAlchemy Setup
# =========================

# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    metadata = MetaData(naming_convention=convention)


# =========================
# Registry Tables
# =========================

registry_entities = sa.Table(
    "registry_entities",
    Base.metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("kind", sa.String(20), nullable=False, index=True),
    sa.Column("name", sa.Text, nullable=False),
    # JSON-encoded list of alternative names
    sa.Column("aliases", sa.Text, nullable=False, server_default="[]"),
    # JSON-encoded {field: value} identifying attributes
    sa.Column("identifiers", sa.Text, nullable=False, server_default="{}"),
    sa.Column("attributes", sa.Text, nullable=False, server_default="{}"),
    # Multi-polygon WKT for patches
    sa.Column("geometry", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
)

entity_references = sa.Table(
    "entity_references",
    Base.metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column(
        "entity_id",
        sa.String(64),
        sa.ForeignKey("registry_entities.id"),
        nullable=False,
        index=True,
    ),
    sa.Column("reference_type", sa.String(50), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
)


# Engine and session factory (lazy initialization)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async SQLAlchemy engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        options = {"echo": settings.database_echo, "pool_pre_ping": True}
        if not settings.database_url.startswith("sqlite"):
            options.update(pool_size=10, max_overflow=20)
        _engine = create_async_engine(settings.database_url, **options)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Commits on success and rolls back on any exception. Uses the settings
    engine unless another session factory is given.

    Usage:
        async with get_db_session() as session:
            result = await session.execute(query)
    """
    factory = factory or get_session_factory()
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_registry_schema(engine: AsyncEngine | None = None) -> None:
    """Create the registry tables if they do not exist."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# =========================
# Cleanup
# =========================


async def close_engine() -> None:
    """Dispose of the engine and forget the session factory (for shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_factory = None
