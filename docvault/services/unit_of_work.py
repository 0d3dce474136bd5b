"""Workflow Unit of Work: one transactional session plus the repositories bound to it.

Invariants:
    - Exactly one session per unit of work; every repository exposed here is bound to it
    - Commit only when the block exits normally; any exception rolls everything back
    - Repositories are unreachable before __aenter__ and after __aexit__

Design Decisions:
    - Workflow code receives repositories only from the unit of work, so a nested
      call cannot silently run outside the workflow's transaction
    - Collections are ensured before the transaction opens: table creation stays
      out of the workflow's transaction
"""

import logging
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from docvault.core.domain_types import (
    Collection, OrderDocument, ProductDocument, ProfileDocument, UserDocument,
)
from docvault.infrastructure.database import DocumentStore
from docvault.services.repository import Repository

logger = logging.getLogger(__name__)


class WorkflowUnitOfWork:
    """Async context manager owning one transaction across the workflow collections."""

    users: Repository[UserDocument]
    orders: Repository[OrderDocument]
    products: Repository[ProductDocument]
    profiles: Repository[ProfileDocument]

    def __init__(self, store: DocumentStore):
        self.store = store
        self._transaction: AbstractAsyncContextManager[AsyncSession] | None = None
        self._session: AsyncSession | None = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("Unit of work is not active")
        return self._session

    async def __aenter__(self) -> "WorkflowUnitOfWork":
        await self.store.ensure_collections(c.value for c in Collection)
        self._transaction = self.store.transaction()
        self._session = await self._transaction.__aenter__()
        self.users = Repository(self.store, Collection.USERS.value, self._session)
        self.orders = Repository(self.store, Collection.ORDERS.value, self._session)
        self.products = Repository(self.store, Collection.PRODUCTS.value, self._session)
        self.profiles = Repository(self.store, Collection.PROFILES.value, self._session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        transaction, self._transaction = self._transaction, None
        self._session = None
        for name in ("users", "orders", "products", "profiles"):
            self.__dict__.pop(name, None)
        if exc_type is not None:
            logger.debug(f"Rolling back unit of work: {exc_val}")
        return await transaction.__aexit__(exc_type, exc_val, exc_tb)
