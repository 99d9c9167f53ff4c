"""
Payroll Engine - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async.
"""

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData

from payroll_engine.config import settings


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def build_engine(url: str, echo: bool = False):
    """Create an async engine, sizing the pool only where the driver pools."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,   # Verify connections before use
        pool_size=5,
        max_overflow=10,
    )


def build_session_maker(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine(settings.database_url_async, echo=settings.debug)

# Create async session factory
async_session_maker = build_session_maker(engine)


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    """
    # Register the payroll tables on Base.metadata
    import payroll_engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
