"""Document Repository: generic per-collection CRUD over DocumentStore.

Invariants:
    - create/create_many stamp createdAt and updatedAt; every successful mutation
      refreshes updatedAt (never backwards) and never touches createdAt
    - By-id operations normalize the identifier before any store access
      (InvalidIdentifierError otherwise)
    - Filters, updates and documents are validated before a session is opened
    - An unbound repository runs each call in its own short transaction; a bound
      repository (bind(session)) runs inside the caller's transaction and never
      commits on its own
    - Every write checks the driver's rowcount (WriteNotAcknowledgedError otherwise)

Design Decisions:
    - One generic class instantiated per collection (Repository[UserDocument] etc.),
      not one class per entity
    - Filters narrow in SQL by primary key and by top-level string equality / $in;
      the full filter is then evaluated in Python over decoded documents
      (core/filters.py), so the SQL predicate only has to select a superset
    - Numeric comparisons stay in Python: casting a JSON field to a number fails
      on PostgreSQL for documents holding a string in that field
    - for_update=True locks the selected rows (SELECT ... FOR UPDATE) for the
      enclosing transaction; SQLite ignores it
"""

import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable, Generic, Mapping, Sequence

from sqlalchemy import ColumnElement, Table, delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docvault.core.documents import (
    CREATED_AT,
    ID_FIELD,
    RESERVED_FIELDS,
    UPDATED_AT,
    assemble_document,
    check_document,
    encode_body,
    new_document_id,
    next_updated_at,
    normalize_id,
    project,
    to_uuid,
    utc_now,
)
from docvault.core.errors import DocVaultError, DocumentValidationError, WriteNotAcknowledgedError
from docvault.core.filters import check_filter, group_documents, matches, resolve_path, sort_documents
from docvault.core.repository_protocols import (
    DocT, Filter, ResultT, SortSpec, Update, UpdateResult,
)
from docvault.core.updates import apply_update, check_update, seed_from_filter
from docvault.infrastructure.database import DocumentStore

logger = logging.getLogger(__name__)


def _split_id_filter(filter: Filter) -> tuple[list[str] | None, dict[str, Any]]:
    """Pull the id condition out of a filter so it can run in SQL.

    Returns (ids or None, filter with the id condition normalized).
    """
    filter = dict(filter)
    if ID_FIELD not in filter:
        return None, filter
    condition = filter[ID_FIELD]
    if isinstance(condition, Mapping) and set(condition) == {"$in"}:
        ids = [normalize_id(value) for value in condition["$in"]]
        filter[ID_FIELD] = {"$in": ids}
        return ids, filter
    if isinstance(condition, Mapping) and set(condition) == {"$eq"}:
        condition = condition["$eq"]
    if isinstance(condition, Mapping):
        return None, filter
    doc_id = normalize_id(condition)
    filter[ID_FIELD] = doc_id
    return [doc_id], filter


def _string_values(condition: Any) -> list[str] | None:
    """Strings a top-level condition requires the field to equal, if that is all it says."""
    if isinstance(condition, Mapping) and set(condition) == {"$eq"}:
        condition = condition["$eq"]
    if isinstance(condition, str):
        return [_plain(condition)]
    if isinstance(condition, Mapping) and set(condition) == {"$in"}:
        values = condition["$in"]
        if isinstance(values, (list, tuple)) and values and all(isinstance(v, str) for v in values):
            return [_plain(v) for v in values]
    return None


def _plain(value: str) -> str:
    return value.value if isinstance(value, Enum) else value


def _body_predicates(table: Table, filter: Mapping[str, Any]) -> list[ColumnElement[bool]]:
    """SQL prefilters for string equality on top-level body fields.

    Array fields render as JSON text starting with '[' and are kept, since
    equality may match one of their elements.
    """
    clauses = []
    for field, condition in filter.items():
        if field.startswith("$") or "." in field or field in RESERVED_FIELDS:
            continue
        values = _string_values(condition)
        if values is None:
            continue
        expr = table.c.body[field].as_string()
        clauses.append(or_(expr.in_(values), expr.like("[%")))
    return clauses


class Repository(Generic[DocT]):
    """Create/read/update/delete/aggregate access to one collection."""

    def __init__(
        self, store: DocumentStore, collection: str, session: AsyncSession | None = None,
    ):
        self.store = store
        self.collection = collection
        self.table = store.table(collection)
        self._session = session

    def bind(self, session: AsyncSession) -> "Repository[DocT]":
        """Repository view that runs inside the given session's transaction."""
        return Repository(self.store, self.collection, session)

    @property
    def is_bound(self) -> bool:
        return self._session is not None

    @asynccontextmanager
    async def _scope(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session is not None:
            await self.store.ensure_collection(self.collection, session=self._session)
            yield self._session
            return
        await self.store.ensure_collection(self.collection)
        async with self.store.transaction() as session:
            yield session

    # ─── Internal Row Access ─────────────────────────────────────

    async def _load(
        self, session: AsyncSession, filter: Filter, *, for_update: bool = False,
    ) -> list[dict]:
        ids, residual = _split_id_filter(filter)
        stmt = select(self.table)
        if ids is not None:
            stmt = stmt.where(self.table.c.id.in_([to_uuid(i) for i in ids]))
        for clause in _body_predicates(self.table, residual):
            stmt = stmt.where(clause)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.order_by(self.table.c.created_at, self.table.c.id)
        result = await session.execute(stmt)
        documents = [
            assemble_document(row.id, row.body, row.created_at, row.updated_at)
            for row in result
        ]
        return [doc for doc in documents if matches(doc, residual)]

    async def _insert(self, session: AsyncSession, documents: Sequence[Mapping[str, Any]]) -> list[dict]:
        now = utc_now()
        stored = []
        for document in documents:
            doc_id = normalize_id(document[ID_FIELD]) if ID_FIELD in document else new_document_id()
            body = encode_body(document)
            result = await session.execute(
                insert(self.table).values(
                    id=to_uuid(doc_id), body=body, created_at=now, updated_at=now,
                ),
            )
            if result.rowcount != 1:
                raise WriteNotAcknowledgedError(self.collection, "insert")
            stored.append(assemble_document(doc_id, body, now, now))
        return stored

    async def _write(self, session: AsyncSession, previous: dict, new_document: Mapping[str, Any]) -> dict:
        updated_at = next_updated_at(previous[UPDATED_AT])
        body = encode_body(new_document)
        result = await session.execute(
            update(self.table)
            .where(self.table.c.id == to_uuid(previous[ID_FIELD]))
            .values(body=body, updated_at=updated_at),
        )
        if result.rowcount != 1:
            raise WriteNotAcknowledgedError(self.collection, "update")
        return assemble_document(previous[ID_FIELD], body, previous[CREATED_AT], updated_at)

    async def _remove(self, session: AsyncSession, documents: list[dict]) -> int:
        if not documents:
            return 0
        result = await session.execute(
            delete(self.table).where(
                self.table.c.id.in_([to_uuid(doc[ID_FIELD]) for doc in documents]),
            ),
        )
        if result.rowcount != len(documents):
            raise WriteNotAcknowledgedError(self.collection, "delete")
        return len(documents)

    # ─── Create ──────────────────────────────────────────────────

    async def create(self, document: Mapping[str, Any]) -> DocT:
        """Stamp, persist and return the stored document with its id."""
        check_document(document)
        if ID_FIELD in document:
            normalize_id(document[ID_FIELD])
        encode_body(document)
        async with self._scope() as session:
            stored = await self._insert(session, [document])
        logger.debug(
            f"Created document in {self.collection}",
            extra={"collection": self.collection, "document_id": stored[0][ID_FIELD]},
        )
        return stored[0]

    async def create_many(self, documents: Sequence[Mapping[str, Any]]) -> list[DocT]:
        if not isinstance(documents, Sequence) or isinstance(documents, (str, bytes)) or not documents:
            raise DocumentValidationError("Documents must be a non-empty list")
        for document in documents:
            check_document(document)
            if ID_FIELD in document:
                normalize_id(document[ID_FIELD])
            encode_body(document)
        async with self._scope() as session:
            return await self._insert(session, documents)

    # ─── Read ────────────────────────────────────────────────────

    async def find(
        self, filter: Filter | None = None, *,
        projection: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None,
        skip: int = 0, limit: int | None = None,
        for_update: bool = False,
    ) -> list[DocT]:
        """Matching documents in sort order; limit=None is unbounded."""
        filter = check_filter(filter)
        if skip < 0 or (limit is not None and limit < 0):
            raise DocumentValidationError("skip and limit must be non-negative")
        async with self._scope() as session:
            documents = await self._load(session, filter, for_update=for_update)
        documents = sort_documents(documents, sort)[skip:]
        if limit is not None:
            documents = documents[:limit]
        return [project(doc, projection) for doc in documents]

    async def find_by_id(
        self, document_id: object, *,
        projection: Mapping[str, Any] | None = None, for_update: bool = False,
    ) -> DocT | None:
        doc_id = normalize_id(document_id)
        documents = await self.find({ID_FIELD: doc_id}, projection=projection, for_update=for_update)
        return documents[0] if documents else None

    async def find_one(
        self, filter: Filter | None = None, *,
        projection: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None, for_update: bool = False,
    ) -> DocT | None:
        documents = await self.find(
            filter, projection=projection, sort=sort, limit=1, for_update=for_update,
        )
        return documents[0] if documents else None

    async def count(self, filter: Filter | None = None) -> int:
        filter = check_filter(filter)
        if not filter:
            async with self._scope() as session:
                result = await session.execute(select(func.count()).select_from(self.table))
                return int(result.scalar_one())
        async with self._scope() as session:
            return len(await self._load(session, filter))

    async def exists(self, filter: Filter | None = None) -> bool:
        return await self.count(filter) > 0

    async def distinct(self, field: str, filter: Filter | None = None) -> list:
        """Distinct values of a field; array values contribute their elements."""
        documents = await self.find(filter)
        values: list = []
        for document in documents:
            for value in resolve_path(document, field):
                for item in value if isinstance(value, list) else [value]:
                    if item not in values:
                        values.append(item)
        return values

    async def aggregate(
        self, filter: Filter | None = None, *,
        group_by: str | None = None,
        metrics: Mapping[str, tuple[str, str | None]] | None = None,
        sort: SortSpec | None = None,
    ) -> list[dict]:
        """Group matching documents; metrics map name -> (sum|avg|min|max|count, field)."""
        documents = await self.find(filter)
        rows = group_documents(documents, group_by, metrics or {"count": ("count", None)})
        return sort_documents(rows, sort)

    # ─── Update ──────────────────────────────────────────────────

    async def update_by_id(self, document_id: object, update: Update) -> DocT | None:
        """Apply update operators; return the post-update document or None."""
        doc_id = normalize_id(document_id)
        update = check_update(update)
        async with self._scope() as session:
            documents = await self._load(session, {ID_FIELD: doc_id}, for_update=True)
            if not documents:
                return None
            return await self._write(session, documents[0], apply_update(documents[0], update))

    async def update_one(self, filter: Filter, update: Update, *, upsert: bool = False) -> UpdateResult:
        return await self._update(filter, update, multi=False, upsert=upsert)

    async def update_many(self, filter: Filter, update: Update) -> UpdateResult:
        return await self._update(filter, update, multi=True, upsert=False)

    async def _update(self, filter: Filter, update: Update, *, multi: bool, upsert: bool) -> UpdateResult:
        filter = check_filter(filter)
        update = check_update(update)
        async with self._scope() as session:
            documents = await self._load(session, filter, for_update=True)
            if not multi:
                documents = documents[:1]
            if not documents and upsert:
                seed = apply_update(seed_from_filter(filter), update)
                stored = await self._insert(session, [seed])
                return UpdateResult(0, 0, stored[0][ID_FIELD])
            modified = 0
            for document in documents:
                await self._write(session, document, apply_update(document, update))
                modified += 1
        return UpdateResult(len(documents), modified)

    async def replace_one(
        self, filter: Filter, replacement: Mapping[str, Any], *, upsert: bool = False,
    ) -> UpdateResult:
        """Replace the whole body, keeping id and createdAt."""
        filter = check_filter(filter)
        check_document(replacement, "Replacement")
        encode_body(replacement)
        async with self._scope() as session:
            documents = (await self._load(session, filter, for_update=True))[:1]
            if not documents:
                if not upsert:
                    return UpdateResult(0, 0)
                stored = await self._insert(session, [{**seed_from_filter(filter), **replacement}])
                return UpdateResult(0, 0, stored[0][ID_FIELD])
            current = documents[0]
            if ID_FIELD in replacement and normalize_id(replacement[ID_FIELD]) != current[ID_FIELD]:
                raise DocumentValidationError("Replacement cannot change the document id", ID_FIELD)
            await self._write(session, current, replacement)
        return UpdateResult(1, 1)

    # ─── Delete ──────────────────────────────────────────────────

    async def delete_by_id(self, document_id: object) -> DocT | None:
        """Remove a document and return it, or None if absent."""
        doc_id = normalize_id(document_id)
        async with self._scope() as session:
            documents = await self._load(session, {ID_FIELD: doc_id}, for_update=True)
            await self._remove(session, documents)
        return documents[0] if documents else None

    async def delete_one(self, filter: Filter) -> int:
        filter = check_filter(filter)
        async with self._scope() as session:
            documents = await self._load(session, filter, for_update=True)
            return await self._remove(session, documents[:1])

    async def delete_many(self, filter: Filter) -> int:
        filter = check_filter(filter)
        async with self._scope() as session:
            documents = await self._load(session, filter, for_update=True)
            return await self._remove(session, documents)

    # ─── Transactions ────────────────────────────────────────────

    async def with_transaction(
        self, fn: Callable[[AsyncSession], Awaitable[ResultT]],
    ) -> ResultT:
        """Run fn(session) in one transaction: commit on return, abort and re-raise on failure."""
        await self.store.ensure_collection(self.collection)
        try:
            async with self.store.transaction() as session:
                return await fn(session)
        except DocVaultError as e:
            logger.warning(
                f"Transaction on {self.collection} aborted: {e.message}",
                extra={"collection": self.collection, "error_code": e.code},
            )
            raise

    # ─── Maintenance ─────────────────────────────────────────────

    async def create_indexes(self, specs: Sequence[Mapping[str, Any]]) -> list[str]:
        return await self.store.create_indexes(self.collection, specs)

    async def drop_collection(self) -> bool:
        return await self.store.drop_collection(self.collection)
