"""Service test fixtures: in-memory document store, repositories, coordinator.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - Store connected before the test, closed after (even on failure)
    - Seed fixtures go through the public repository API, not raw SQL

Design Decisions:
    - SQLite in-memory: fast, no external dependency, same SQLAlchemy code path
      as PostgreSQL (row locks are no-ops here, so tests stay sequential)
"""

import pytest

from docvault.infrastructure.database import DocumentStore
from docvault.services.repository import Repository
from docvault.services.workflow_coordinator import WorkflowCoordinator


@pytest.fixture
async def store():
    store = DocumentStore("sqlite+aiosqlite:///:memory:")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def coordinator(store):
    return WorkflowCoordinator(store)


@pytest.fixture
def users(store):
    return Repository(store, "users")


@pytest.fixture
def products(store):
    return Repository(store, "products")


@pytest.fixture
def orders(store):
    return Repository(store, "orders")


@pytest.fixture
def profiles(store):
    return Repository(store, "profiles")


@pytest.fixture
async def alice(coordinator):
    """User with balance 500."""
    result = await coordinator.create_user_with_setup(
        {"name": "Alice", "email": "alice@example.com"}, {"initialBalance": 500},
    )
    return result.user


@pytest.fixture
async def bob(coordinator):
    """User with balance 50."""
    result = await coordinator.create_user_with_setup(
        {"name": "Bob", "email": "bob@example.com"}, {"initialBalance": 50},
    )
    return result.user


@pytest.fixture
async def widget(products):
    """Product with stock 5, price 10."""
    return await products.create({
        "name": "Widget", "category": "tools", "price": 10.0, "stock": 5,
        "stockHistory": [], "priceHistory": [],
    })


@pytest.fixture
async def gadget(products):
    """Product with stock 3, price 25."""
    return await products.create({
        "name": "Gadget", "category": "electronics", "price": 25.0, "stock": 3,
        "stockHistory": [], "priceHistory": [],
    })
