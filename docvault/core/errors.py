"""Error Hierarchy: typed, categorized exceptions for every docvault failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Validation and business-rule errors are raised before or instead of a commit;
      a workflow that raises one leaves no partial write behind
    - Store failures (SQLAlchemy/driver) are mapped once, at the session boundary,
      into DatabaseError or one of its siblings (infrastructure/database.py)
    - to_dict() produces a flat envelope for logs and callers

Design Decisions:
    - Single hierarchy with DocVaultError base: callers catch one type
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    CONFLICT = "conflict"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    collection: str | None = None
    document_id: str | None = None
    workflow: str | None = None
    attempt: int | None = None
    debug_info: dict[str, Any] | None = None


class DocVaultError(Exception):
    """Base exception for all docvault errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.retryable = retryable

    def to_dict(self) -> dict:
        """Convert to a flat error envelope."""
        return {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "timestamp": self.context.timestamp.isoformat(),
            "context": {
                "collection": self.context.collection,
                "document_id": self.context.document_id,
                "workflow": self.context.workflow,
                "attempt": self.context.attempt,
            },
        }


# ─── Input Errors ───────────────────────────────────────────────

class InvalidIdentifierError(DocVaultError):
    """Malformed document identifier passed to a by-id operation."""
    def __init__(self, value: object, context: ErrorContext | None = None):
        super().__init__(
            f"Invalid document identifier: {value!r}",
            "INVALID_IDENTIFIER", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context,
        )
        self.value = value


class DocumentValidationError(DocVaultError):
    """Document, filter, update or workflow input has the wrong shape."""
    def __init__(self, message: str, field: str | None = None, context: ErrorContext | None = None):
        super().__init__(
            message, "VALIDATION_ERROR", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context,
        )
        self.field = field


class InvalidAmountError(DocVaultError):
    """Monetary amount is not a positive finite number."""
    def __init__(self, amount: object, context: ErrorContext | None = None):
        super().__init__(
            f"Amount must be a positive number, got {amount!r}",
            "INVALID_AMOUNT", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context,
        )
        self.amount = amount


class InvalidPriceError(DocVaultError):
    """Price revision entry carries a non-positive price."""
    def __init__(self, product_id: str, price: object, context: ErrorContext | None = None):
        super().__init__(
            f"Invalid price for product {product_id}: {price!r}",
            "INVALID_PRICE", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context,
        )
        self.product_id = product_id
        self.price = price


# ─── Domain Errors ──────────────────────────────────────────────

class ResourceNotFoundError(DocVaultError):
    """Referenced document does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class OutOfStockError(DocVaultError):
    """Requested quantity exceeds available stock."""
    def __init__(
        self, product_id: str, product_name: str | None, available: int, requested: int,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Insufficient stock for product {product_name or product_id}. "
            f"Available: {available}, Requested: {requested}",
            "OUT_OF_STOCK", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context,
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class InsufficientFundsError(DocVaultError):
    """Source account balance is lower than the transfer amount."""
    def __init__(self, user_id: str, available: float, requested: float, context: ErrorContext | None = None):
        super().__init__(
            f"Insufficient balance. Available: {available}, Requested: {requested}",
            "INSUFFICIENT_FUNDS", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context,
        )
        self.user_id = user_id
        self.available = available
        self.requested = requested


class AlreadyCancelledError(DocVaultError):
    """Order is already cancelled."""
    def __init__(self, order_id: str, context: ErrorContext | None = None):
        super().__init__(
            f"Order {order_id} is already cancelled",
            "ALREADY_CANCELLED", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context,
        )
        self.order_id = order_id


class NotCancellableError(DocVaultError):
    """Order has progressed past the point where it can be cancelled."""
    def __init__(self, order_id: str, status: str, context: ErrorContext | None = None):
        super().__init__(
            f"Cannot cancel order {order_id} with status '{status}'",
            "NOT_CANCELLABLE", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context,
        )
        self.order_id = order_id
        self.status = status


class InvalidStatusTransitionError(DocVaultError):
    """Requested order status change is not a permitted transition."""
    def __init__(self, order_id: str, current: str, target: str, context: ErrorContext | None = None):
        super().__init__(
            f"Order {order_id} cannot move from '{current}' to '{target}'",
            "INVALID_STATUS_TRANSITION", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context,
        )
        self.order_id = order_id
        self.current = current
        self.target = target


# ─── Infrastructure Errors ──────────────────────────────────────

class DatabaseError(DocVaultError):
    """Store operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context,
        )
        self.operation = operation


class StoreConnectionError(DocVaultError):
    """Could not connect to the store after exhausting retries."""
    def __init__(self, message: str, attempts: int, context: ErrorContext | None = None):
        super().__init__(
            f"Failed to connect after {attempts} attempts: {message}",
            "CONNECTION_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context,
        )
        self.attempts = attempts


class WriteNotAcknowledgedError(DocVaultError):
    """Store did not confirm a write."""
    def __init__(self, collection: str, operation: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.collection = collection
        super().__init__(
            f"{operation} on {collection} was not acknowledged",
            "WRITE_NOT_ACKNOWLEDGED", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, ctx,
        )
        self.operation = operation


class DuplicateKeyError(DocVaultError):
    """Write violated a unique index."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            f"Duplicate key: {message}",
            "DUPLICATE_KEY", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context,
        )


class TransactionAbortedError(DocVaultError):
    """Store aborted the transaction (write conflict, deadlock, lock timeout)."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            f"Transaction aborted: {message}",
            "TRANSACTION_ABORTED", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, retryable=True,
        )
