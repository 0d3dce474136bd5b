"""Error Hierarchy: codes, categories, envelopes.

Tests:
    - Every concrete error is a DocVaultError with its stable code
    - Only TransactionAbortedError is retryable
    - to_dict() carries context fields
"""

import pytest

from docvault.core.errors import (
    AlreadyCancelledError,
    DatabaseError,
    DocVaultError,
    DocumentValidationError,
    DuplicateKeyError,
    ErrorCategory,
    ErrorContext,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidIdentifierError,
    InvalidPriceError,
    InvalidStatusTransitionError,
    NotCancellableError,
    OutOfStockError,
    ResourceNotFoundError,
    StoreConnectionError,
    TransactionAbortedError,
    WriteNotAcknowledgedError,
)


@pytest.mark.parametrize("error, code, category", [
    (InvalidIdentifierError("x"), "INVALID_IDENTIFIER", ErrorCategory.VALIDATION),
    (DocumentValidationError("bad", "f"), "VALIDATION_ERROR", ErrorCategory.VALIDATION),
    (InvalidAmountError(0), "INVALID_AMOUNT", ErrorCategory.VALIDATION),
    (InvalidPriceError("p", -1), "INVALID_PRICE", ErrorCategory.VALIDATION),
    (ResourceNotFoundError("User", "u"), "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND),
    (OutOfStockError("p", "Widget", 5, 6), "OUT_OF_STOCK", ErrorCategory.BUSINESS_RULE),
    (InsufficientFundsError("u", 10, 20), "INSUFFICIENT_FUNDS", ErrorCategory.BUSINESS_RULE),
    (AlreadyCancelledError("o"), "ALREADY_CANCELLED", ErrorCategory.BUSINESS_RULE),
    (NotCancellableError("o", "shipped"), "NOT_CANCELLABLE", ErrorCategory.BUSINESS_RULE),
    (InvalidStatusTransitionError("o", "a", "b"), "INVALID_STATUS_TRANSITION", ErrorCategory.BUSINESS_RULE),
    (DatabaseError("boom", "insert"), "DATABASE_ERROR", ErrorCategory.DATABASE),
    (StoreConnectionError("refused", 3), "CONNECTION_ERROR", ErrorCategory.DATABASE),
    (WriteNotAcknowledgedError("users", "insert"), "WRITE_NOT_ACKNOWLEDGED", ErrorCategory.DATABASE),
    (DuplicateKeyError("email"), "DUPLICATE_KEY", ErrorCategory.CONFLICT),
    (TransactionAbortedError("conflict"), "TRANSACTION_ABORTED", ErrorCategory.CONFLICT),
])
def test_error_codes_and_categories(error, code, category):
    assert isinstance(error, DocVaultError)
    assert error.code == code
    assert error.category == category
    assert error.retryable is isinstance(error, TransactionAbortedError)


def test_messages_carry_details():
    assert "Available: 5, Requested: 6" in OutOfStockError("p", "Widget", 5, 6).message
    assert "User 'u1' not found" == ResourceNotFoundError("User", "u1").message
    assert "after 3 attempts" in StoreConnectionError("refused", 3).message


def test_write_not_acknowledged_sets_collection():
    assert WriteNotAcknowledgedError("orders", "update").context.collection == "orders"


def test_to_dict_envelope():
    error = InsufficientFundsError("u", 10, 20, ErrorContext(workflow="transfer_funds", attempt=1))
    envelope = error.to_dict()
    assert envelope["code"] == "INSUFFICIENT_FUNDS"
    assert envelope["category"] == "business_rule"
    assert envelope["retryable"] is False
    assert envelope["context"]["workflow"] == "transfer_funds"
    assert envelope["context"]["attempt"] == 1
