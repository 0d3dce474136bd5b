"""Update Operators: validation and application.

Tests:
    - check_update rejects empty, unknown operators, and immutable targets
    - updatedAt targets are dropped, not rejected
    - apply_update returns a new document (input untouched)
    - $inc on missing fields starts at 0; non-numeric targets rejected
    - $push with $each, $addToSet dedupes, $pull by value and by condition
    - seed_from_filter keeps equality fields only
"""

import pytest

from docvault.core.errors import DocumentValidationError
from docvault.core.updates import apply_update, check_update, seed_from_filter


def test_check_update_rejects_empty():
    with pytest.raises(DocumentValidationError):
        check_update({})


def test_check_update_rejects_unknown_operator():
    with pytest.raises(DocumentValidationError):
        check_update({"$rename": {"a": "b"}})


def test_check_update_rejects_plain_fields():
    with pytest.raises(DocumentValidationError):
        check_update({"name": "x"})


@pytest.mark.parametrize("field", ["id", "createdAt", "createdAt.nested"])
def test_check_update_rejects_immutable_fields(field):
    with pytest.raises(DocumentValidationError):
        check_update({"$set": {field: "x"}})


def test_check_update_drops_updated_at():
    assert check_update({"$set": {"updatedAt": 1, "name": "x"}}) == {"$set": {"name": "x"}}


def test_apply_update_does_not_mutate_input():
    original = {"stock": 5, "history": []}
    updated = apply_update(original, {"$inc": {"stock": -2}, "$push": {"history": {"change": -2}}})
    assert updated == {"stock": 3, "history": [{"change": -2}]}
    assert original == {"stock": 5, "history": []}


def test_set_creates_nested_paths():
    assert apply_update({}, {"$set": {"a.b": 1}}) == {"a": {"b": 1}}


def test_unset_removes_field():
    assert apply_update({"a": 1, "b": 2}, {"$unset": {"a": ""}}) == {"b": 2}


def test_unset_missing_path_is_noop():
    assert apply_update({"b": 2}, {"$unset": {"a.c": ""}}) == {"b": 2}


def test_inc_missing_field_starts_at_zero():
    assert apply_update({}, {"$inc": {"totalOrders": 1}}) == {"totalOrders": 1}


def test_inc_rejects_non_numeric():
    with pytest.raises(DocumentValidationError):
        apply_update({"name": "x"}, {"$inc": {"name": 1}})
    with pytest.raises(DocumentValidationError):
        apply_update({"n": 1}, {"$inc": {"n": "1"}})


def test_push_each():
    assert apply_update({"t": [1]}, {"$push": {"t": {"$each": [2, 3]}}}) == {"t": [1, 2, 3]}


def test_push_to_non_array_rejected():
    with pytest.raises(DocumentValidationError):
        apply_update({"t": 1}, {"$push": {"t": 2}})


def test_add_to_set_skips_existing():
    assert apply_update({"t": [1, 2]}, {"$addToSet": {"t": {"$each": [2, 3]}}}) == {"t": [1, 2, 3]}


def test_pull_by_value():
    assert apply_update({"h": ["a", "b", "a"]}, {"$pull": {"h": "a"}}) == {"h": ["b"]}


def test_pull_by_condition():
    doc = {"entries": [{"amount": 5}, {"amount": -5}], "n": [1, 5, 9]}
    updated = apply_update(doc, {"$pull": {"entries": {"amount": {"$lt": 0}}, "n": {"$gte": 5}}})
    assert updated == {"entries": [{"amount": 5}], "n": [1]}


def test_seed_from_filter():
    seed = seed_from_filter({
        "email": "a@example.com", "status": {"$eq": "active"},
        "balance": {"$gte": 5}, "$or": [{"x": 1}], "profile.city": "Paris",
    })
    assert seed == {"email": "a@example.com", "status": "active", "profile": {"city": "Paris"}}
