"""Async Session Factory: sessions bound to the DocumentStore engine.

Invariants:
    - Uses the same engine as DocumentStore
    - expire_on_commit=False: documents are plain dicts, nothing to lazy-load

Design Decisions:
    - DocumentStore builds one factory per engine at construction and opens every
      session through it
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


def create_session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory for the given engine."""
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )
