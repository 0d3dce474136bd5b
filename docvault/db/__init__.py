"""Database Layer: collection table layout and async session factory.

Invariants:
    - One MetaData per DocumentStore; collection tables registered lazily
    - All sessions are async (AsyncSession)

Design Decisions:
    - asyncpg driver for PostgreSQL: native async, no thread pool overhead
    - aiosqlite for tests: same code path, in-memory database
"""
