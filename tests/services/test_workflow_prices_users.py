"""Price Revisions, User Provisioning, Index Setup, Lifespan.

Invariants:
    - One invalid price rejects the whole batch before any mutation
    - Every price change leaves a priceHistory record; zero old price has no percent
    - User creation zeroes counters; profile failure rolls back the user
    - Opening balance produces one "Initial balance" credit
    - ensure_indexes makes email unique; lifespan runs it at startup
"""

import pytest

from docvault.config import Settings
from docvault.core.documents import new_document_id
from docvault.core.errors import (
    DocumentValidationError,
    DuplicateKeyError,
    InvalidAmountError,
    InvalidPriceError,
    ResourceNotFoundError,
)
from docvault.main import lifespan
from docvault.services.repository import Repository


# ─── bulk_update_prices ──────────────────────────────────────────

async def test_bulk_update_prices(coordinator, products, widget, gadget):
    result = await coordinator.bulk_update_prices([
        {"productId": widget["id"], "newPrice": 12.0, "reason": "Supplier increase"},
        {"productId": gadget["id"], "newPrice": 20.0},
    ])

    assert result.updated_count == 2
    by_id = {revision.product_id: revision for revision in result.results}
    assert by_id[widget["id"]].old_price == 10.0
    assert by_id[widget["id"]].new_price == 12.0
    assert by_id[widget["id"]].change == 2.0
    assert by_id[widget["id"]].change_percent == pytest.approx(20.0)
    assert by_id[gadget["id"]].change == -5.0
    assert by_id[gadget["id"]].change_percent == pytest.approx(-20.0)

    stored = await products.find_by_id(widget["id"])
    assert stored["price"] == 12.0
    [history] = stored["priceHistory"]
    assert history["oldPrice"] == 10.0
    assert history["newPrice"] == 12.0
    assert history["reason"] == "Supplier increase"
    assert history["updatedBy"] == "system"
    assert history["timestamp"] == result.timestamp
    assert (await products.find_by_id(gadget["id"]))["priceHistory"][0]["reason"] == "Bulk price update"


async def test_one_invalid_price_rejects_batch(coordinator, products):
    catalog = await products.create_many([
        {"name": f"Item {i}", "price": 10.0 + i, "stock": 1} for i in range(10)
    ])
    entries = [{"productId": doc["id"], "newPrice": 99.0} for doc in catalog]
    entries.insert(5, {"productId": catalog[0]["id"], "newPrice": -1})

    with pytest.raises(InvalidPriceError):
        await coordinator.bulk_update_prices(entries)

    for doc in catalog:
        stored = await products.find_by_id(doc["id"])
        assert stored["price"] == doc["price"]
        assert "priceHistory" not in stored


@pytest.mark.parametrize("price", [0, -0.01, float("inf")])
async def test_non_positive_prices_rejected(coordinator, widget, price):
    with pytest.raises(InvalidPriceError):
        await coordinator.bulk_update_prices([{"productId": widget["id"], "newPrice": price}])


async def test_unknown_product_rolls_back_batch(coordinator, products, widget):
    with pytest.raises(ResourceNotFoundError):
        await coordinator.bulk_update_prices([
            {"productId": widget["id"], "newPrice": 11.0},
            {"productId": new_document_id(), "newPrice": 11.0},
        ])
    assert (await products.find_by_id(widget["id"]))["price"] == 10.0


async def test_zero_old_price_has_no_percent(coordinator, products):
    promo = await products.create({"name": "Promo", "price": 0, "stock": 1})
    result = await coordinator.bulk_update_prices(
        [{"productId": promo["id"], "newPrice": 5.0}], updated_by="pricing-job",
    )
    [revision] = result.results
    assert revision.change == 5.0
    assert revision.change_percent is None
    history = (await products.find_by_id(promo["id"]))["priceHistory"][0]
    assert history["changePercent"] is None
    assert history["updatedBy"] == "pricing-job"


# ─── create_user_with_setup ──────────────────────────────────────

async def test_create_user_defaults(coordinator, profiles):
    result = await coordinator.create_user_with_setup({"name": "Carol", "email": "carol@example.com"})
    user = result.user
    assert result.profile is None
    assert user["status"] == "active"
    assert user["balance"] == 0
    assert user["transactions"] == []
    assert user["orderHistory"] == []
    assert (user["totalOrders"], user["totalSpent"], user["cancelledOrders"]) == (0, 0, 0)
    assert user["preferences"] == {}
    assert await profiles.count() == 0


async def test_create_user_with_balance_and_profile(coordinator, users, profiles):
    result = await coordinator.create_user_with_setup(
        {"name": "Dan", "email": "dan@example.com", "phone": "555-0100"},
        {
            "initialBalance": 75,
            "preferences": {"newsletter": True},
            "createProfile": True,
            "profileData": {"bio": "Hello", "id": "ignored"},
        },
    )
    user = await users.find_by_id(result.user["id"])
    assert user["phone"] == "555-0100"
    assert user["balance"] == 75
    assert user["preferences"] == {"newsletter": True}
    [credit] = user["transactions"]
    assert credit["type"] == "credit"
    assert credit["amount"] == 75
    assert credit["description"] == "Initial balance"

    profile = await profiles.find_one({"userId": user["id"]})
    assert profile == result.profile
    assert profile["bio"] == "Hello"
    assert profile["id"] != "ignored"


async def test_profile_failure_rolls_back_user(coordinator, users, profiles):
    with pytest.raises(DocumentValidationError):
        await coordinator.create_user_with_setup(
            {"name": "Eve", "email": "eve@example.com"},
            {"createProfile": True, "profileData": {"avatar": object()}},
        )
    assert await users.count() == 0
    assert await profiles.count() == 0


async def test_negative_initial_balance_rejected(coordinator, users):
    with pytest.raises(InvalidAmountError):
        await coordinator.create_user_with_setup(
            {"name": "Fay", "email": "fay@example.com"}, {"initialBalance": -1},
        )
    assert await users.count() == 0


@pytest.mark.parametrize("user_data", [
    {"name": "NoEmail"},
    {"name": "Bad", "email": "not-an-email"},
    {"name": "", "email": "x@example.com"},
    "not a mapping",
])
async def test_invalid_user_data(coordinator, user_data):
    with pytest.raises(DocumentValidationError):
        await coordinator.create_user_with_setup(user_data)


# ─── ensure_indexes ──────────────────────────────────────────────

async def test_ensure_indexes_enforces_unique_email(coordinator, users):
    created = await coordinator.ensure_indexes()
    assert "ix_users_email_1" in created["users"]
    assert "ix_profiles_userId_1" in created["profiles"]

    await coordinator.create_user_with_setup({"name": "Gus", "email": "gus@example.com"})
    with pytest.raises(DuplicateKeyError):
        await coordinator.create_user_with_setup({"name": "Gus 2", "email": "gus@example.com"})
    assert await users.count() == 1


async def test_ensure_indexes_is_repeatable(coordinator):
    assert await coordinator.ensure_indexes() == await coordinator.ensure_indexes()


# ─── Lifespan ────────────────────────────────────────────────────

async def test_lifespan_yields_working_coordinator():
    settings = Settings(
        _env_file=None, database_url="sqlite+aiosqlite:///:memory:",
        log_format="text", transaction_max_attempts=2,
    )
    async with lifespan(settings) as coordinator:
        assert coordinator.max_attempts == 2
        assert await coordinator.store.ping() is True
        result = await coordinator.create_user_with_setup({"name": "Hal", "email": "hal@example.com"})
        assert result.user["status"] == "active"
        with pytest.raises(DuplicateKeyError):
            await coordinator.create_user_with_setup({"name": "Hal Two", "email": "hal@example.com"})
        users = Repository(coordinator.store, "users")
        assert await users.count({"email": "hal@example.com"}) == 1
        store = coordinator.store
    assert store.connected is False
