"""Update Operators: apply $set / $unset / $inc / $push / $pull / $addToSet to a document.

Invariants:
    - apply_update() never mutates its input; it returns a new document
    - id and createdAt cannot be targeted; updatedAt is owned by the repository
      and silently dropped from caller updates
    - $inc only touches numbers (missing fields start at 0)
    - $push / $addToSet only touch arrays (missing fields start as [])

Design Decisions:
    - Operator-only updates: a plain field mapping is a replacement and goes
      through replace_one, never through update_*
"""

import copy
from typing import Any, Mapping

from docvault.core.documents import CREATED_AT, ID_FIELD, UPDATED_AT
from docvault.core.errors import DocumentValidationError
from docvault.core.filters import FIELD_OPERATORS, matches

UPDATE_OPERATORS = frozenset({"$set", "$unset", "$inc", "$push", "$pull", "$addToSet"})
_IMMUTABLE = frozenset({ID_FIELD, CREATED_AT})


def check_update(update: object) -> dict[str, dict[str, Any]]:
    """Validate an update and return it without any updatedAt targets."""
    if not isinstance(update, Mapping) or not update:
        raise DocumentValidationError("Update must be a non-empty mapping of operators")
    cleaned: dict[str, dict[str, Any]] = {}
    for op, fields in update.items():
        if op not in UPDATE_OPERATORS:
            raise DocumentValidationError(f"Unsupported update operator: {op}", op)
        if not isinstance(fields, Mapping):
            raise DocumentValidationError(f"{op} requires a mapping of fields", op)
        kept = {}
        for path, value in fields.items():
            root = path.split(".")[0]
            if root in _IMMUTABLE:
                raise DocumentValidationError(f"Field '{root}' is immutable", root)
            if root == UPDATED_AT:
                continue
            kept[path] = value
        if kept:
            cleaned[op] = kept
    return cleaned


def _parent(document: dict, path: str, create: bool) -> tuple[dict | None, str]:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        child = current.get(part)
        if child is None:
            if not create:
                return None, parts[-1]
            child = current[part] = {}
        if not isinstance(child, dict):
            raise DocumentValidationError(f"Cannot traverse non-object field at '{path}'", path)
        current = child
    return current, parts[-1]


def _pull_matches(item: Any, condition: Any) -> bool:
    if isinstance(condition, Mapping) and condition:
        if all(k in FIELD_OPERATORS for k in condition):
            return matches({"v": item}, {"v": condition})
        if isinstance(item, Mapping):
            return matches(item, condition)
    return item == condition


def apply_update(document: Mapping[str, Any], update: Mapping[str, Mapping[str, Any]]) -> dict:
    """Return a copy of document with the update operators applied."""
    result = copy.deepcopy(dict(document))

    for path, value in update.get("$set", {}).items():
        parent, key = _parent(result, path, create=True)
        parent[key] = copy.deepcopy(value)

    for path in update.get("$unset", {}):
        parent, key = _parent(result, path, create=False)
        if parent is not None:
            parent.pop(key, None)

    for path, delta in update.get("$inc", {}).items():
        if isinstance(delta, bool) or not isinstance(delta, (int, float)):
            raise DocumentValidationError(f"$inc value for '{path}' must be numeric", path)
        parent, key = _parent(result, path, create=True)
        current = parent.get(key, 0)
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            raise DocumentValidationError(f"Cannot $inc non-numeric field '{path}'", path)
        parent[key] = current + delta

    for op in ("$push", "$addToSet"):
        for path, value in update.get(op, {}).items():
            parent, key = _parent(result, path, create=True)
            current = parent.setdefault(key, [])
            if not isinstance(current, list):
                raise DocumentValidationError(f"Cannot {op} to non-array field '{path}'", path)
            if isinstance(value, Mapping) and set(value) == {"$each"}:
                items = list(value["$each"])
            else:
                items = [value]
            for item in items:
                if op == "$addToSet" and item in current:
                    continue
                current.append(copy.deepcopy(item))

    for path, condition in update.get("$pull", {}).items():
        parent, key = _parent(result, path, create=False)
        if parent is None or key not in parent:
            continue
        current = parent[key]
        if not isinstance(current, list):
            raise DocumentValidationError(f"Cannot $pull from non-array field '{path}'", path)
        parent[key] = [item for item in current if not _pull_matches(item, condition)]

    return result


def seed_from_filter(filter: Mapping[str, Any]) -> dict:
    """Equality fields of a filter, used as the base document of an upsert."""
    seed: dict[str, Any] = {}
    for path, condition in filter.items():
        if path.startswith("$"):
            continue
        if isinstance(condition, Mapping):
            if set(condition) == {"$eq"}:
                condition = condition["$eq"]
            elif any(isinstance(k, str) and k.startswith("$") for k in condition):
                continue
        parent, key = _parent(seed, path, create=True)
        parent[key] = copy.deepcopy(condition)
    return seed
