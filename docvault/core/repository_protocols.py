"""Boundary Protocols: the repository surface the workflow coordinator depends on.

Invariants:
    - Core NEVER imports from services/ or infrastructure/
    - Workflow code reaches documents only through DocumentRepository
    - By-id methods raise InvalidIdentifierError before any IO

Design Decisions:
    - Protocol over ABC: structural subtyping, an in-memory fake needs no base class
    - Async in Protocol: implementations do IO
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, TypeVar

DocT = TypeVar("DocT", bound=Mapping[str, Any])
ResultT = TypeVar("ResultT")

Filter = Mapping[str, Any]
Update = Mapping[str, Mapping[str, Any]]
SortSpec = Mapping[str, int] | Sequence[tuple[str, int]]


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of update_one / update_many / replace_one."""
    matched_count: int
    modified_count: int
    upserted_id: str | None = None


class DocumentRepository(Protocol[DocT]):
    """Contract for per-collection document access."""
    collection: str

    async def create(self, document: Mapping[str, Any]) -> DocT: ...
    async def create_many(self, documents: Sequence[Mapping[str, Any]]) -> list[DocT]: ...

    async def find(
        self, filter: Filter | None = None, *,
        projection: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None,
        skip: int = 0, limit: int | None = None,
        for_update: bool = False,
    ) -> list[DocT]: ...
    async def find_by_id(
        self, document_id: object, *,
        projection: Mapping[str, Any] | None = None, for_update: bool = False,
    ) -> DocT | None: ...
    async def find_one(
        self, filter: Filter | None = None, *,
        projection: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None, for_update: bool = False,
    ) -> DocT | None: ...
    async def count(self, filter: Filter | None = None) -> int: ...
    async def exists(self, filter: Filter | None = None) -> bool: ...

    async def update_by_id(self, document_id: object, update: Update) -> DocT | None: ...
    async def update_one(self, filter: Filter, update: Update, *, upsert: bool = False) -> UpdateResult: ...
    async def update_many(self, filter: Filter, update: Update) -> UpdateResult: ...
    async def replace_one(
        self, filter: Filter, replacement: Mapping[str, Any], *, upsert: bool = False,
    ) -> UpdateResult: ...

    async def delete_by_id(self, document_id: object) -> DocT | None: ...
    async def delete_one(self, filter: Filter) -> int: ...
    async def delete_many(self, filter: Filter) -> int: ...

    async def with_transaction(
        self, fn: Callable[[Any], Awaitable[ResultT]],
    ) -> ResultT: ...
