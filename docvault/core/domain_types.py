"""Domain Types: rich types that replace bare primitives across the codebase.

Invariants:
    - DocumentId is the canonical lowercase hyphenated UUID string (core/documents.py)
    - All valid states encoded as Enums, no raw string matching in workflow code
    - Document shapes are TypedDicts: documents stay plain dicts on the wire

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: stored in JSON documents without custom encoders
"""

from datetime import datetime
from enum import Enum
from typing import Any, NewType, TypedDict


# ─── Identity Types ──────────────────────────────────────────────

DocumentId = NewType("DocumentId", str)
UserId = NewType("UserId", str)
OrderId = NewType("OrderId", str)
ProductId = NewType("ProductId", str)
CorrelationId = NewType("CorrelationId", str)


# ─── Collections ─────────────────────────────────────────────────

class Collection(str, Enum):
    """Collections touched by the workflow coordinator."""
    USERS = "users"
    ORDERS = "orders"
    PRODUCTS = "products"
    PROFILES = "profiles"


# ─── Enums ───────────────────────────────────────────────────────

class OrderStatus(str, Enum):
    """Order lifecycle states. Transition table lives in core/business_rules.py."""
    PENDING = "pending"
    COMPLETED = "completed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class UserStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class LedgerEntryType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class LedgerEntryStatus(str, Enum):
    COMPLETED = "completed"


class StockChangeReason(str, Enum):
    """Tag carried by every stockHistory entry."""
    ORDER_PLACED = "order_placed"
    ORDER_CANCELLED = "order_cancelled"


# ─── Document Shapes ─────────────────────────────────────────────

class LedgerEntry(TypedDict, total=False):
    id: CorrelationId
    type: str
    amount: float
    counterpartyId: str | None
    description: str
    timestamp: datetime
    status: str


class StockHistoryEntry(TypedDict):
    orderId: str
    change: int
    reason: str
    timestamp: datetime


class PriceHistoryEntry(TypedDict):
    oldPrice: float
    newPrice: float
    change: float
    changePercent: float | None
    reason: str
    timestamp: datetime
    updatedBy: str


class OrderItem(TypedDict):
    productId: ProductId
    quantity: int
    price: float
    lineTotal: float


class UserDocument(TypedDict, total=False):
    id: UserId
    name: str
    email: str
    balance: float
    status: str
    preferences: dict[str, Any]
    orderHistory: list[OrderId]
    transactions: list[LedgerEntry]
    totalOrders: int
    totalSpent: float
    cancelledOrders: int
    createdAt: datetime
    updatedAt: datetime


class ProductDocument(TypedDict, total=False):
    id: ProductId
    name: str
    category: str
    price: float
    stock: int
    stockHistory: list[StockHistoryEntry]
    priceHistory: list[PriceHistoryEntry]
    createdAt: datetime
    updatedAt: datetime


class OrderDocument(TypedDict, total=False):
    id: OrderId
    userId: UserId
    items: list[OrderItem]
    total: float
    status: str
    cancelledAt: datetime
    cancellationReason: str
    statusUpdatedAt: datetime
    createdAt: datetime
    updatedAt: datetime


class ProfileDocument(TypedDict, total=False):
    id: DocumentId
    userId: UserId
    createdAt: datetime
    updatedAt: datetime
