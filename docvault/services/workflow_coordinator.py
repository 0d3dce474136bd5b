"""Workflow Coordinator: all-or-nothing business transactions across collections.

Invariants:
    - Each workflow runs inside exactly one WorkflowUnitOfWork (one session);
      every nested repository call goes through that unit of work
    - Inputs (ids, amounts, prices, shapes) are validated before the session opens
    - Product.stock never goes negative: decrements are conditional on stock >= quantity
    - A transfer writes two ledger entries with one correlation id summing to 0
    - Order.total is the sum of line totals and is never rewritten
    - Status changes follow core/business_rules.ORDER_TRANSITIONS
    - Errors propagate unmodified after rollback; only TransactionAbortedError is
      retried, at most transaction_max_attempts times in total

Design Decisions:
    - Rows read for a decision (buyer, products, accounts, order) are locked with
      for_update so concurrent workflows serialize on them
    - Locks are taken in one global order: order, then users, then products,
      with rows of the same collection in id order
    - Cancellation is compensating: it re-applies positive deltas computed from the
      order, it does not restore earlier document snapshots
    - Retry backoff: exponential with ±25% jitter, capped
"""

import asyncio
import logging
import math
import random
from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from docvault.config import Settings
from docvault.core.business_rules import (
    check_amount,
    check_cancellable,
    check_prices,
    check_transition,
    line_total,
    order_total,
    price_change,
)
from docvault.core.documents import RESERVED_FIELDS, new_document_id, normalize_id, utc_now
from docvault.core.domain_types import (
    Collection,
    LedgerEntryStatus,
    LedgerEntryType,
    OrderStatus,
    StockChangeReason,
    UserStatus,
)
from docvault.core.errors import (
    DocVaultError,
    DocumentValidationError,
    InsufficientFundsError,
    InvalidAmountError,
    OutOfStockError,
    ResourceNotFoundError,
    TransactionAbortedError,
)
from docvault.infrastructure.database import DocumentStore
from docvault.schemas.workflows import (
    BulkPriceUpdate,
    CancellationReceipt,
    OrderInfo,
    OrderItemRequest,
    OrderPlacement,
    PriceRevision,
    PriceUpdateEntry,
    StatusChange,
    TransferReceipt,
    UserCreate,
    UserProvisioning,
    UserSetup,
)
from docvault.services.unit_of_work import WorkflowUnitOfWork

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

STANDARD_INDEXES: dict[Collection, list[dict[str, Any]]] = {
    Collection.USERS: [
        {"key": {"email": 1}, "unique": True},
        {"key": {"status": 1}},
        {"key": {"createdAt": -1}},
    ],
    Collection.PRODUCTS: [
        {"key": {"name": 1}},
        {"key": {"category": 1}},
    ],
    Collection.ORDERS: [
        {"key": {"userId": 1}},
        {"key": {"status": 1}},
        {"key": {"createdAt": -1}},
    ],
    Collection.PROFILES: [
        {"key": {"userId": 1}, "unique": True},
    ],
}


def _parse(model: type[M], data: object) -> M:
    """Validate workflow input, mapping pydantic errors onto DocumentValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise DocumentValidationError(
            f"Invalid {model.__name__}: {field or 'input'}: {first['msg']}", field or None,
        ) from e


def _extra_fields(model: BaseModel, *protected: str) -> dict[str, Any]:
    skip = RESERVED_FIELDS.union(protected)
    return {k: v for k, v in (model.model_extra or {}).items() if k not in skip}


def _without_reserved(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in RESERVED_FIELDS}


class WorkflowCoordinator:
    """Composes the Users, Orders, Products and Profiles repositories into atomic workflows."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        max_attempts: int = 1,
        retry_base_delay_ms: int = 50,
        retry_max_delay_ms: int = 2_000,
    ):
        self.store = store
        self.max_attempts = max(max_attempts, 1)
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms

    @classmethod
    def from_settings(cls, store: DocumentStore, settings: Settings) -> "WorkflowCoordinator":
        return cls(
            store,
            max_attempts=settings.transaction_max_attempts,
            retry_base_delay_ms=settings.transaction_retry_base_delay_ms,
            retry_max_delay_ms=settings.transaction_retry_max_delay_ms,
        )

    def unit_of_work(self) -> WorkflowUnitOfWork:
        return WorkflowUnitOfWork(self.store)

    async def _run(
        self, workflow: str, operation: Callable[[WorkflowUnitOfWork], Awaitable[T]],
    ) -> T:
        """Run operation in a fresh unit of work, retrying store-level aborts."""
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.unit_of_work() as uow:
                    return await operation(uow)
            except TransactionAbortedError as e:
                e.context.workflow = workflow
                e.context.attempt = attempt
                if attempt >= self.max_attempts:
                    logger.error(
                        f"{workflow} aborted by the store after {attempt} attempt(s): {e.message}",
                        extra={"workflow": workflow, "error_code": e.code, "attempt": attempt},
                    )
                    raise
                delay = self._backoff(attempt)
                logger.warning(
                    f"{workflow} aborted by the store, retry after {delay}ms (attempt {attempt})",
                    extra={"workflow": workflow, "error_code": e.code, "attempt": attempt},
                )
                await asyncio.sleep(delay / 1000)
            except DocVaultError as e:
                e.context.workflow = workflow
                logger.warning(
                    f"{workflow} failed: {e.message}",
                    extra={"workflow": workflow, "error_code": e.code},
                )
                raise

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.retry_max_delay_ms, (2 ** attempt) * self.retry_base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    # ─── Order Placement ─────────────────────────────────────────

    async def process_order(
        self, order_info: OrderInfo | Mapping[str, Any],
        items: Iterable[OrderItemRequest | Mapping[str, Any]],
    ) -> OrderPlacement:
        """Create a pending order and reserve stock for every item, or nothing at all."""
        info = _parse(OrderInfo, order_info)
        requests = [_parse(OrderItemRequest, item) for item in items]
        if not requests:
            raise DocumentValidationError("Order requires at least one item", "items")
        user_id = normalize_id(info.user_id)
        for request in requests:
            request.product_id = normalize_id(request.product_id)

        async def place(uow: WorkflowUnitOfWork) -> OrderPlacement:
            user = await uow.users.find_by_id(user_id, for_update=True)
            if user is None:
                raise ResourceNotFoundError("User", user_id)

            locked = {
                product_id: await uow.products.find_by_id(product_id, for_update=True)
                for product_id in sorted({request.product_id for request in requests})
            }

            reserved: dict[str, int] = {}
            lines = []
            for request in requests:
                product_id = request.product_id
                product = locked[product_id]
                if product is None:
                    raise ResourceNotFoundError("Product", product_id)
                stock = product.get("stock", 0)
                already = reserved.get(product_id, 0)
                if already + request.quantity > stock:
                    raise OutOfStockError(
                        product_id, product.get("name"), stock - already, request.quantity,
                    )
                price = product.get("price")
                check_prices([(product_id, price)])
                reserved[product_id] = already + request.quantity
                lines.append({
                    "productId": product_id,
                    "quantity": request.quantity,
                    "price": price,
                    "lineTotal": line_total(price, request.quantity),
                })

            total = order_total(lines)
            order = await uow.orders.create({
                **_extra_fields(info, "userId", "items", "total", "status"),
                "userId": user_id,
                "items": lines,
                "total": total,
                "status": OrderStatus.PENDING.value,
            })

            placed_at = utc_now()
            for line in lines:
                result = await uow.products.update_one(
                    {"id": line["productId"], "stock": {"$gte": line["quantity"]}},
                    {
                        "$inc": {"stock": -line["quantity"]},
                        "$push": {"stockHistory": {
                            "orderId": order["id"],
                            "change": -line["quantity"],
                            "reason": StockChangeReason.ORDER_PLACED.value,
                            "timestamp": placed_at,
                        }},
                    },
                )
                if result.matched_count != 1:
                    raise OutOfStockError(line["productId"], None, 0, line["quantity"])

            await uow.users.update_by_id(user_id, {
                "$push": {"orderHistory": order["id"]},
                "$inc": {"totalOrders": 1, "totalSpent": total},
            })
            logger.info(
                f"Order {order['id']} processed for user {user_id}",
                extra={"workflow": "process_order", "document_id": order["id"]},
            )
            return OrderPlacement(order=order, total_amount=total)

        return await self._run("process_order", place)

    # ─── Fund Transfer ───────────────────────────────────────────

    async def transfer_funds(
        self, source_id: object, destination_id: object, amount: float, note: str = "",
    ) -> TransferReceipt:
        """Move amount between two users with a matched debit/credit ledger pair."""
        amount = check_amount(amount)
        source = normalize_id(source_id)
        destination = normalize_id(destination_id)
        if source == destination:
            raise DocumentValidationError(
                "Source and destination accounts must differ", "destination_id",
            )

        async def transfer(uow: WorkflowUnitOfWork) -> TransferReceipt:
            accounts = {}
            for user_id in sorted((source, destination)):
                accounts[user_id] = await uow.users.find_by_id(user_id, for_update=True)
            if accounts[source] is None:
                raise ResourceNotFoundError("User", source)
            if accounts[destination] is None:
                raise ResourceNotFoundError("User", destination)

            balance = accounts[source].get("balance", 0)
            if balance < amount:
                raise InsufficientFundsError(source, balance, amount)

            correlation_id = new_document_id()
            timestamp = utc_now()
            debit = {
                "id": correlation_id,
                "type": LedgerEntryType.DEBIT.value,
                "amount": -amount,
                "counterpartyId": destination,
                "description": note,
                "timestamp": timestamp,
                "status": LedgerEntryStatus.COMPLETED.value,
            }
            credit = {
                **debit,
                "type": LedgerEntryType.CREDIT.value,
                "amount": amount,
                "counterpartyId": source,
            }

            debited = await uow.users.update_one(
                {"id": source, "balance": {"$gte": amount}},
                {"$inc": {"balance": -amount}, "$push": {"transactions": debit}},
            )
            if debited.matched_count != 1:
                raise InsufficientFundsError(source, balance, amount)
            credited = await uow.users.update_by_id(
                destination,
                {"$inc": {"balance": amount}, "$push": {"transactions": credit}},
            )
            if credited is None:
                raise ResourceNotFoundError("User", destination)

            logger.info(
                f"Transfer of {amount} from {source} to {destination} completed",
                extra={"workflow": "transfer_funds", "correlation_id": correlation_id},
            )
            return TransferReceipt(
                transaction_id=correlation_id,
                amount=amount,
                source_id=source,
                destination_id=destination,
                timestamp=timestamp,
            )

        return await self._run("transfer_funds", transfer)

    # ─── Order Cancellation ──────────────────────────────────────

    async def cancel_order(self, order_id: object, reason: str = "User requested") -> CancellationReceipt:
        """Cancel a pending/completed order, restoring stock and buyer aggregates."""
        order_id = normalize_id(order_id)

        async def cancel(uow: WorkflowUnitOfWork) -> CancellationReceipt:
            order = await uow.orders.find_by_id(order_id, for_update=True)
            if order is None:
                raise ResourceNotFoundError("Order", order_id)
            check_cancellable(order_id, order.get("status"))
            if await uow.users.find_by_id(order["userId"], for_update=True) is None:
                raise ResourceNotFoundError("User", order["userId"])

            cancelled_at = utc_now()
            items = order.get("items", [])
            for item in sorted(items, key=lambda item: item["productId"]):
                restored = await uow.products.update_by_id(item["productId"], {
                    "$inc": {"stock": item["quantity"]},
                    "$push": {"stockHistory": {
                        "orderId": order_id,
                        "change": item["quantity"],
                        "reason": StockChangeReason.ORDER_CANCELLED.value,
                        "timestamp": cancelled_at,
                    }},
                })
                if restored is None:
                    raise ResourceNotFoundError("Product", item["productId"])

            await uow.orders.update_by_id(order_id, {"$set": {
                "status": OrderStatus.CANCELLED.value,
                "cancelledAt": cancelled_at,
                "cancellationReason": reason,
            }})
            await uow.users.update_by_id(order["userId"], {"$inc": {
                "totalOrders": -1,
                "totalSpent": -order["total"],
                "cancelledOrders": 1,
            }})

            logger.info(
                f"Order {order_id} cancelled",
                extra={"workflow": "cancel_order", "document_id": order_id},
            )
            return CancellationReceipt(
                order_id=order_id,
                reason=reason,
                restored_items=len(items),
                refund_amount=order["total"],
                cancelled_at=cancelled_at,
            )

        return await self._run("cancel_order", cancel)

    # ─── Order Status ────────────────────────────────────────────

    async def advance_order_status(
        self, order_id: object, new_status: OrderStatus | str,
    ) -> StatusChange:
        """Move an order one step forward (completed, shipped, delivered)."""
        order_id = normalize_id(order_id)
        target = new_status.value if isinstance(new_status, OrderStatus) else str(new_status)

        async def advance(uow: WorkflowUnitOfWork) -> StatusChange:
            order = await uow.orders.find_by_id(order_id, for_update=True)
            if order is None:
                raise ResourceNotFoundError("Order", order_id)
            previous = order.get("status")
            status = check_transition(order_id, previous, target)
            updated = await uow.orders.update_by_id(order_id, {"$set": {
                "status": status.value,
                "statusUpdatedAt": utc_now(),
            }})
            logger.info(
                f"Order {order_id} moved from {previous} to {status.value}",
                extra={"workflow": "advance_order_status", "document_id": order_id},
            )
            return StatusChange(
                order_id=order_id, previous_status=previous, status=status, order=updated,
            )

        return await self._run("advance_order_status", advance)

    # ─── Price Revision ──────────────────────────────────────────

    async def bulk_update_prices(
        self, entries: Iterable[PriceUpdateEntry | Mapping[str, Any]], updated_by: str = "system",
    ) -> BulkPriceUpdate:
        """Set new prices with a priceHistory audit record; any bad price rejects the batch."""
        parsed = [_parse(PriceUpdateEntry, entry) for entry in entries]
        check_prices((entry.product_id, entry.new_price) for entry in parsed)
        for entry in parsed:
            entry.product_id = normalize_id(entry.product_id)

        async def revise(uow: WorkflowUnitOfWork) -> BulkPriceUpdate:
            locked = {
                product_id: await uow.products.find_by_id(product_id, for_update=True)
                for product_id in sorted({entry.product_id for entry in parsed})
            }
            timestamp = utc_now()
            results = []
            for entry in parsed:
                product = locked[entry.product_id]
                if product is None:
                    raise ResourceNotFoundError("Product", entry.product_id)
                old_price = product.get("price")
                change, change_percent = price_change(old_price, entry.new_price)
                await uow.products.update_by_id(entry.product_id, {
                    "$set": {"price": entry.new_price},
                    "$push": {"priceHistory": {
                        "oldPrice": old_price,
                        "newPrice": entry.new_price,
                        "change": change,
                        "changePercent": change_percent,
                        "reason": entry.reason,
                        "timestamp": timestamp,
                        "updatedBy": updated_by,
                    }},
                })
                results.append(PriceRevision(
                    product_id=entry.product_id,
                    product_name=product.get("name"),
                    old_price=old_price,
                    new_price=entry.new_price,
                    change=change,
                    change_percent=change_percent,
                ))
            logger.info(
                f"Bulk price update completed for {len(results)} products",
                extra={"workflow": "bulk_update_prices"},
            )
            return BulkPriceUpdate(updated_count=len(results), results=results, timestamp=timestamp)

        return await self._run("bulk_update_prices", revise)

    # ─── User Provisioning ───────────────────────────────────────

    async def create_user_with_setup(
        self, user_data: UserCreate | Mapping[str, Any],
        settings: UserSetup | Mapping[str, Any] | None = None,
    ) -> UserProvisioning:
        """Create a user with zeroed counters, optional profile and opening balance."""
        user = _parse(UserCreate, user_data)
        setup = _parse(UserSetup, settings or {})
        initial_balance = setup.initial_balance
        if not math.isfinite(initial_balance) or initial_balance < 0:
            raise InvalidAmountError(initial_balance)

        document = {
            **_extra_fields(user),
            "name": user.name,
            "email": user.email,
            "balance": initial_balance,
            "status": UserStatus.ACTIVE.value,
            "preferences": setup.preferences,
            "orderHistory": [],
            "transactions": [],
            "totalOrders": 0,
            "totalSpent": 0,
            "cancelledOrders": 0,
        }

        async def provision(uow: WorkflowUnitOfWork) -> UserProvisioning:
            created = await uow.users.create(document)
            profile = None
            if setup.create_profile:
                profile = await uow.profiles.create({
                    **_without_reserved(setup.profile_data),
                    "userId": created["id"],
                })
            if initial_balance > 0:
                created = await uow.users.update_by_id(created["id"], {"$push": {"transactions": {
                    "id": new_document_id(),
                    "type": LedgerEntryType.CREDIT.value,
                    "amount": initial_balance,
                    "counterpartyId": None,
                    "description": "Initial balance",
                    "timestamp": utc_now(),
                    "status": LedgerEntryStatus.COMPLETED.value,
                }}})
            logger.info(
                f"User {created['id']} created with initial setup",
                extra={"workflow": "create_user_with_setup", "document_id": created["id"]},
            )
            return UserProvisioning(user=created, profile=profile)

        return await self._run("create_user_with_setup", provision)

    # ─── Maintenance ─────────────────────────────────────────────

    async def ensure_indexes(self) -> dict[str, list[str]]:
        """Create the standard indexes on every workflow collection."""
        created = {}
        for collection, specs in STANDARD_INDEXES.items():
            created[collection.value] = await self.store.create_indexes(collection.value, specs)
        return created
