"""Document Filters: matching, sorting, grouping.

Tests:
    - Empty filter matches everything
    - Comparison and set operators, dotted paths, array element equality
    - $and / $or composition; unknown operators rejected
    - Incomparable types never match and never raise
    - Sort is stable, multi-key, None first
    - group_documents folds sum/avg/min/max/count
"""

import pytest

from docvault.core.errors import DocumentValidationError
from docvault.core.filters import (
    check_filter, group_documents, matches, normalize_sort, resolve_path, sort_documents,
)

PRODUCT = {
    "id": "p1",
    "name": "Widget",
    "price": 10.0,
    "stock": 5,
    "tags": ["tools", "sale"],
    "stockHistory": [{"change": -2, "reason": "order_placed"}],
    "dimensions": {"weight": 3},
}


def test_empty_filter_matches_all():
    assert matches(PRODUCT, {})
    assert matches(PRODUCT, None)


def test_plain_equality():
    assert matches(PRODUCT, {"name": "Widget"})
    assert not matches(PRODUCT, {"name": "Gadget"})


@pytest.mark.parametrize("condition, expected", [
    ({"$gt": 4}, True),
    ({"$gte": 5}, True),
    ({"$lt": 5}, False),
    ({"$lte": 5}, True),
    ({"$ne": 5}, False),
    ({"$in": [1, 5]}, True),
    ({"$nin": [1, 5]}, False),
    ({"$gte": 2, "$lt": 6}, True),
])
def test_field_operators(condition, expected):
    assert matches(PRODUCT, {"stock": condition}) is expected


def test_dotted_path_into_object():
    assert matches(PRODUCT, {"dimensions.weight": 3})


def test_dotted_path_through_array():
    assert matches(PRODUCT, {"stockHistory.reason": "order_placed"})


def test_equality_matches_array_element():
    assert matches(PRODUCT, {"tags": "sale"})
    assert not matches(PRODUCT, {"tags": "new"})


def test_exists():
    assert matches(PRODUCT, {"price": {"$exists": True}})
    assert matches(PRODUCT, {"discount": {"$exists": False}})


def test_none_matches_missing_field():
    assert matches(PRODUCT, {"discount": None})


def test_and_or():
    assert matches(PRODUCT, {"$or": [{"stock": 0}, {"name": "Widget"}]})
    assert not matches(PRODUCT, {"$and": [{"stock": 5}, {"name": "Gadget"}]})


def test_incomparable_types_do_not_match():
    assert not matches(PRODUCT, {"name": {"$gt": 3}})


def test_bool_not_compared_with_numbers():
    assert not matches({"flag": True}, {"flag": {"$gte": 1}})


def test_unknown_operator_rejected():
    with pytest.raises(DocumentValidationError):
        matches(PRODUCT, {"stock": {"$regex": "x"}})
    with pytest.raises(DocumentValidationError):
        matches(PRODUCT, {"$where": "1"})


def test_in_requires_list():
    with pytest.raises(DocumentValidationError):
        matches(PRODUCT, {"stock": {"$in": 5}})


def test_check_filter():
    assert check_filter(None) == {}
    with pytest.raises(DocumentValidationError):
        check_filter("stock > 5")


def test_resolve_path_numeric_index():
    assert resolve_path(PRODUCT, "tags.0") == ["tools"]


# ─── Sorting ─────────────────────────────────────────────────────

def test_sort_multi_key_and_stable():
    docs = [
        {"n": 1, "c": "b"}, {"n": 2, "c": "a"}, {"n": 3, "c": "b"}, {"n": 4, "c": "a"},
    ]
    ordered = sort_documents(docs, {"c": 1, "n": -1})
    assert [d["n"] for d in ordered] == [4, 2, 3, 1]


def test_sort_missing_values_first():
    docs = [{"n": 2}, {}, {"n": 1}]
    assert sort_documents(docs, [("n", 1)]) == [{}, {"n": 1}, {"n": 2}]


def test_sort_mixed_types_does_not_raise():
    docs = [{"v": "a"}, {"v": 1}, {"v": None}]
    assert [d["v"] for d in sort_documents(docs, {"v": 1})] == [None, 1, "a"]


def test_sort_direction_validated():
    with pytest.raises(DocumentValidationError):
        normalize_sort({"n": 0})


# ─── Grouping ────────────────────────────────────────────────────

def test_group_documents_accumulators():
    orders = [
        {"status": "pending", "total": 10},
        {"status": "pending", "total": 30},
        {"status": "cancelled", "total": 5},
    ]
    rows = group_documents(orders, "status", {
        "orders": ("count", None),
        "revenue": ("sum", "total"),
        "average": ("avg", "total"),
        "smallest": ("min", "total"),
        "largest": ("max", "total"),
    })
    by_group = {row["group"]: row for row in rows}
    assert by_group["pending"] == {
        "group": "pending", "orders": 2, "revenue": 40,
        "average": 20, "smallest": 10, "largest": 30,
    }
    assert by_group["cancelled"]["orders"] == 1


def test_group_without_key_is_single_row():
    rows = group_documents([{"x": 1}, {"x": 2}], None, {"total": ("sum", "x")})
    assert rows == [{"group": None, "total": 3}]


def test_group_rejects_unknown_accumulator():
    with pytest.raises(DocumentValidationError):
        group_documents([], None, {"x": ("median", "x")})
