"""Workflow Schemas: Pydantic models for coordinator inputs and results.

Invariants:
    - Inputs accept both camelCase document names and snake_case (populate_by_name)
    - OrderInfo and UserCreate keep unknown fields (extra="allow"): they are copied
      onto the created document
    - Money and price sign rules are NOT encoded here: they raise the typed
      InvalidAmount/InvalidPrice errors from core/business_rules.py instead of a
      ValidationError

Design Decisions:
    - Results are models, documents inside them stay plain dicts
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from docvault.core.domain_types import OrderStatus


class _Input(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ─── Inputs ──────────────────────────────────────────────────────

class OrderInfo(_Input):
    """Order header: buyer plus any extra order fields (shipping address, notes)."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")
    user_id: str | UUID = Field(alias="userId")


class OrderItemRequest(_Input):
    product_id: str | UUID = Field(alias="productId")
    quantity: int = Field(gt=0)


class PriceUpdateEntry(_Input):
    product_id: str | UUID = Field(alias="productId")
    new_price: float = Field(alias="newPrice")
    reason: str = "Bulk price update"


class UserCreate(_Input):
    """New user fields; extra fields are stored as-is."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=320)


class UserSetup(_Input):
    initial_balance: float = Field(0, alias="initialBalance")
    preferences: dict[str, Any] = Field(default_factory=dict)
    create_profile: bool = Field(False, alias="createProfile")
    profile_data: dict[str, Any] = Field(default_factory=dict, alias="profileData")


# ─── Results ─────────────────────────────────────────────────────

class OrderPlacement(BaseModel):
    order: dict[str, Any]
    total_amount: float
    message: str = "Order processed successfully"


class TransferReceipt(BaseModel):
    transaction_id: str
    amount: float
    source_id: str
    destination_id: str
    timestamp: datetime
    message: str = "Transfer completed successfully"


class CancellationReceipt(BaseModel):
    order_id: str
    reason: str
    restored_items: int
    refund_amount: float
    cancelled_at: datetime
    message: str = "Order cancelled and inventory restored"


class PriceRevision(BaseModel):
    product_id: str
    product_name: str | None
    old_price: Any = None
    new_price: float
    change: float
    change_percent: float | None


class BulkPriceUpdate(BaseModel):
    updated_count: int
    results: list[PriceRevision]
    timestamp: datetime
    message: str = "Bulk price update completed successfully"


class UserProvisioning(BaseModel):
    user: dict[str, Any]
    profile: dict[str, Any] | None = None
    message: str = "User created successfully with initial setup"


class StatusChange(BaseModel):
    order_id: str
    previous_status: OrderStatus
    status: OrderStatus
    order: dict[str, Any]
