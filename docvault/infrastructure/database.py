"""Document Store: pooled async engine, collection tables, transactional sessions.

Invariants:
    - Every session rolls back on exception (no partial commits leak)
    - All SQLAlchemy exceptions mapped once, here, into core/errors.py types
    - Write conflicts (serialization failure, deadlock, lock timeout) surface as
      TransactionAbortedError; everything else as DatabaseError / DuplicateKeyError
    - connect() is idempotent and retries a bounded number of times with a fixed delay
    - ping() never raises; close() is idempotent
    - Pool invalidations are logged, never raised

Design Decisions:
    - Explicit instance injected into repositories: no module-global singleton
    - One table per collection (db/base.py), created on connect() or on first use
    - pool_pre_ping for stale connection detection
    - expire_on_commit=False: documents are plain dicts, nothing to lazy-load
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Iterable, Mapping, Sequence

from sqlalchemy import Index, MetaData, Table, event, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import (
    DBAPIError, IntegrityError, OperationalError, SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from docvault.config import Settings
from docvault.core.errors import (
    DatabaseError,
    DocVaultError,
    DocumentValidationError,
    DuplicateKeyError,
    StoreConnectionError,
    TransactionAbortedError,
)
from docvault.db.base import collection_table
from docvault.db.session import create_session_factory

logger = logging.getLogger(__name__)

_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
_UNIQUE_VIOLATION = "23505"

_COLUMN_FIELDS = {"id": "id", "createdAt": "created_at", "updatedAt": "updated_at"}


def _sqlstate(error: DBAPIError) -> str | None:
    """Pull the SQLSTATE from the driver error (asyncpg hides it one level down)."""
    orig = error.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def translate_error(error: SQLAlchemyError, operation: str) -> DocVaultError:
    """Map a SQLAlchemy exception onto the docvault hierarchy."""
    if isinstance(error, DBAPIError):
        state = _sqlstate(error)
        detail = str(error.orig)
        if state in _CONFLICT_SQLSTATES or "database is locked" in detail:
            return TransactionAbortedError(detail)
        if isinstance(error, IntegrityError):
            if state == _UNIQUE_VIOLATION or "UNIQUE constraint failed" in detail:
                return DuplicateKeyError(detail)
            return DatabaseError("Integrity constraint violated", operation)
        if isinstance(error, OperationalError):
            return DatabaseError("Connection or operational error", operation)
        return DatabaseError("Database driver error", operation)
    return DatabaseError("Database operation failed", operation)


def _log_invalidation(dbapi_connection, connection_record, exception) -> None:
    if exception is not None:
        logger.warning(f"Pooled connection invalidated: {exception}")


class DocumentStore:
    """Owns the pooled engine and hands out transactional sessions."""

    def __init__(
        self,
        database_url: str,
        *,
        database_name: str | None = None,
        username: str | None = None,
        password: str | None = None,
        max_pool_size: int = 10,
        min_pool_size: int = 2,
        max_idle_time_ms: int = 30_000,
        server_selection_timeout_ms: int = 5_000,
        socket_timeout_ms: int = 45_000,
        isolation_level: str | None = "REPEATABLE READ",
        connect_retries: int = 3,
        connect_retry_delay_ms: int = 2_000,
    ):
        self.url = self._build_url(database_url, database_name, username, password)
        self.engine = create_async_engine(
            self.url,
            **self._engine_options(
                self.url,
                max_pool_size=max_pool_size,
                min_pool_size=min_pool_size,
                max_idle_time_ms=max_idle_time_ms,
                server_selection_timeout_ms=server_selection_timeout_ms,
                socket_timeout_ms=socket_timeout_ms,
                isolation_level=isolation_level,
            ),
        )
        event.listen(self.engine.sync_engine, "invalidate", _log_invalidation)
        self._session_factory = create_session_factory(self.engine)
        self.metadata = MetaData()
        self.connect_retries = max(connect_retries, 1)
        self.connect_retry_delay_ms = connect_retry_delay_ms
        self.connected = False
        self._ready: set[str] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentStore":
        return cls(
            settings.database_url,
            database_name=settings.database_name,
            username=settings.database_username,
            password=settings.database_password,
            max_pool_size=settings.database_max_pool_size,
            min_pool_size=settings.database_min_pool_size,
            max_idle_time_ms=settings.database_max_idle_time_ms,
            server_selection_timeout_ms=settings.database_server_selection_timeout_ms,
            socket_timeout_ms=settings.database_socket_timeout_ms,
            isolation_level=settings.database_isolation_level,
            connect_retries=settings.database_connect_retries,
            connect_retry_delay_ms=settings.database_connect_retry_delay_ms,
        )

    @staticmethod
    def _build_url(
        database_url: str, database_name: str | None,
        username: str | None, password: str | None,
    ) -> URL:
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite":
            return url
        if database_name:
            url = url.set(database=database_name)
        if username and password:
            url = url.set(username=username, password=password)
        return url

    @staticmethod
    def _engine_options(url: URL, **cfg: Any) -> dict[str, Any]:
        if url.get_backend_name() == "sqlite":
            if url.database in (None, "", ":memory:"):
                return {"poolclass": StaticPool}
            return {}
        pool_size = max(cfg["min_pool_size"], 1)
        options: dict[str, Any] = {
            "pool_size": pool_size,
            "max_overflow": max(cfg["max_pool_size"] - pool_size, 0),
            "pool_timeout": cfg["server_selection_timeout_ms"] / 1000,
            "pool_recycle": cfg["max_idle_time_ms"] / 1000,
            "pool_pre_ping": True,
        }
        if cfg["isolation_level"]:
            options["isolation_level"] = cfg["isolation_level"]
        if url.get_driver_name() == "asyncpg":
            options["connect_args"] = {
                "timeout": cfg["server_selection_timeout_ms"] / 1000,
                "command_timeout": cfg["socket_timeout_ms"] / 1000,
            }
        return options

    # ─── Lifecycle ───────────────────────────────────────────────

    async def connect(self) -> None:
        """Verify connectivity and create registered collections. Idempotent."""
        if self.connected:
            return
        last_error: Exception | None = None
        for attempt in range(1, self.connect_retries + 1):
            try:
                async with self.engine.begin() as conn:
                    await conn.execute(text("SELECT 1"))
                    await conn.run_sync(self.metadata.create_all)
                break
            except (SQLAlchemyError, OSError) as e:
                last_error = e
                logger.warning(
                    f"Connection attempt {attempt}/{self.connect_retries} failed: {e}",
                    extra={"attempt": attempt},
                )
                if attempt < self.connect_retries:
                    await asyncio.sleep(self.connect_retry_delay_ms / 1000)
        else:
            raise StoreConnectionError(str(last_error), self.connect_retries) from last_error

        self._ready.update(self.metadata.tables)
        self.connected = True
        logger.info(
            f"Connected to document store {self.url.render_as_string(hide_password=True)}",
        )

    async def ping(self) -> bool:
        """Liveness check. Never raises."""
        if not self.connected:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Store ping failed: {e}")
            return False

    async def close(self) -> None:
        """Dispose the pool. Idempotent."""
        if not self.connected:
            return
        await self.engine.dispose()
        self.connected = False
        self._ready.clear()
        logger.info("Document store connection closed")

    def _require_connected(self) -> None:
        if not self.connected:
            raise RuntimeError("Document store not connected. Call connect() first.")

    # ─── Sessions ────────────────────────────────────────────────

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide session with auto-rollback and error mapping on exception."""
        self._require_connected()
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            error = translate_error(e, "transaction")
            logger.error(f"Store error: {e}", extra={"error_code": error.code})
            raise error from e
        finally:
            await session.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Session with an open transaction: commit on exit, rollback on exception."""
        async with self.session() as session:
            async with session.begin():
                yield session

    # ─── Collections ─────────────────────────────────────────────

    def table(self, name: str) -> Table:
        return collection_table(self.metadata, name)

    async def ensure_collection(
        self, name: str, session: AsyncSession | None = None,
    ) -> Table:
        """Create the collection table if needed.

        Inside a session the check runs on the session's own connection and is
        not cached: the surrounding transaction may still roll it back.
        """
        table = self.table(name)
        if name in self._ready:
            return table
        self._require_connected()
        if session is not None:
            await session.run_sync(
                lambda sync_session: table.create(sync_session.connection(), checkfirst=True),
            )
            return table
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(table.create, checkfirst=True)
        except SQLAlchemyError as e:
            raise translate_error(e, "create collection") from e
        self._ready.add(name)
        return table

    async def ensure_collections(self, names: Iterable[str]) -> None:
        for name in names:
            await self.ensure_collection(name)

    async def drop_collection(self, name: str) -> bool:
        """Drop a collection and its indexes. A missing collection is success."""
        self._require_connected()
        table = self.table(name)
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(table.drop, checkfirst=True)
        except SQLAlchemyError as e:
            raise translate_error(e, "drop collection") from e
        for index in list(table.indexes):
            table.indexes.discard(index)
        self._ready.discard(name)
        logger.info(f"Collection {name} dropped", extra={"collection": name})
        return True

    async def create_indexes(
        self, name: str, specs: Sequence[Mapping[str, Any]],
    ) -> list[str]:
        """Create indexes from {"key": {field: 1|-1}, "unique": bool, "name": str} specs."""
        table = await self.ensure_collection(name)
        indexes = [self._build_index(table, spec) for spec in specs]
        try:
            async with self.engine.begin() as conn:
                for index in indexes:
                    await conn.run_sync(index.create, checkfirst=True)
        except SQLAlchemyError as e:
            raise translate_error(e, "create index") from e
        logger.info(
            f"Created {len(indexes)} indexes for {name}", extra={"collection": name},
        )
        return [index.name for index in indexes]

    @staticmethod
    def _build_index(table: Table, spec: Mapping[str, Any]) -> Index:
        keys = spec.get("key")
        if not isinstance(keys, Mapping) or not keys:
            raise DocumentValidationError("Index spec requires a non-empty 'key' mapping", "key")
        expressions = []
        for field, direction in keys.items():
            if direction not in (1, -1):
                raise DocumentValidationError(f"Index direction for '{field}' must be 1 or -1", field)
            if field in _COLUMN_FIELDS:
                expr = table.c[_COLUMN_FIELDS[field]]
            else:
                parts = tuple(field.split("."))
                expr = table.c.body[parts if len(parts) > 1 else parts[0]].as_string()
            expressions.append(expr.desc() if direction == -1 else expr)

        name = spec.get("name") or "ix_{}_{}".format(
            table.name,
            "_".join(f"{f.replace('.', '_')}_{d}" for f, d in keys.items()).replace("-", "m"),
        )[:63]
        for existing in table.indexes:
            if existing.name == name:
                return existing
        return Index(name, *expressions, unique=bool(spec.get("unique", False)))
