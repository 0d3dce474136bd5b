"""Document Filters: match, sort and group plain documents.

Invariants:
    - An empty filter matches every document
    - Equality against an array field matches when any element is equal
    - Comparisons between incomparable types never match (no TypeError leaks)
    - sort_documents() is stable and orders None/missing values first

Design Decisions:
    - Minimal operator set ($eq $ne $gt $gte $lt $lte $in $nin $exists, $and/$or):
      enough for workflow guards and maintenance queries, not a query language
    - Evaluated in Python over decoded documents; the store only prefilters by id
      and by top-level string equality
"""

from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Sequence

from docvault.core.errors import DocumentValidationError

_MISSING = object()

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$gt": lambda a, b: a > b,
    "$gte": lambda a, b: a >= b,
    "$lt": lambda a, b: a < b,
    "$lte": lambda a, b: a <= b,
}
FIELD_OPERATORS = frozenset({"$eq", "$ne", "$in", "$nin", "$exists", *_COMPARATORS})


def resolve_path(document: Any, path: str) -> list[Any]:
    """Collect every value reachable at a dotted path, descending through arrays."""
    values = [document]
    for part in path.split("."):
        next_values = []
        for value in values:
            if isinstance(value, Mapping):
                if part in value:
                    next_values.append(value[part])
            elif isinstance(value, list):
                if part.isdigit() and int(part) < len(value):
                    next_values.append(value[int(part)])
                else:
                    next_values.extend(
                        item[part] for item in value
                        if isinstance(item, Mapping) and part in item
                    )
        values = next_values
    return values


def _candidates(values: list[Any]) -> list[Any]:
    """Values plus the elements of any array values."""
    out = list(values)
    for value in values:
        if isinstance(value, list):
            out.extend(value)
    return out


def _equals(values: list[Any], expected: Any) -> bool:
    if expected is None and not values:
        return True
    return any(value == expected for value in _candidates(values))


def _compare(values: list[Any], op: str, expected: Any) -> bool:
    compare = _COMPARATORS[op]
    for value in _candidates(values):
        if isinstance(value, bool) != isinstance(expected, bool):
            continue
        try:
            if compare(value, expected):
                return True
        except TypeError:
            continue
    return False


def _match_field(document: Mapping[str, Any], path: str, condition: Any) -> bool:
    values = resolve_path(document, path)
    is_operator_dict = (
        isinstance(condition, Mapping)
        and condition
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )
    if not is_operator_dict:
        return _equals(values, condition)

    for op, expected in condition.items():
        if op == "$eq":
            ok = _equals(values, expected)
        elif op == "$ne":
            ok = not _equals(values, expected)
        elif op == "$in":
            ok = any(_equals(values, item) for item in _as_list(op, expected))
        elif op == "$nin":
            ok = not any(_equals(values, item) for item in _as_list(op, expected))
        elif op == "$exists":
            ok = bool(values) == bool(expected)
        elif op in _COMPARATORS:
            ok = _compare(values, op, expected)
        else:
            raise DocumentValidationError(f"Unsupported filter operator: {op}", path)
        if not ok:
            return False
    return True


def _as_list(op: str, value: Any) -> list:
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise DocumentValidationError(f"{op} requires a list")
    return list(value)


def matches(document: Mapping[str, Any], filter: Mapping[str, Any] | None) -> bool:
    """Evaluate a filter against one decoded document."""
    if not filter:
        return True
    for key, condition in filter.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in _as_list(key, condition)):
                return False
        elif key == "$or":
            if not any(matches(document, sub) for sub in _as_list(key, condition)):
                return False
        elif key.startswith("$"):
            raise DocumentValidationError(f"Unsupported filter operator: {key}", key)
        elif not _match_field(document, key, condition):
            return False
    return True


def check_filter(filter: object) -> Mapping[str, Any]:
    if filter is None:
        return {}
    if not isinstance(filter, Mapping):
        raise DocumentValidationError("Filter must be a mapping")
    return filter


# ─── Sorting ─────────────────────────────────────────────────────

def _type_rank(value: Any) -> int:
    if value is None or value is _MISSING:
        return 0
    if isinstance(value, bool):
        return 5
    if isinstance(value, (int, float)):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, Mapping):
        return 3
    if isinstance(value, list):
        return 4
    if isinstance(value, datetime):
        return 6
    return 7


def _sort_key(document: Mapping[str, Any], path: str) -> tuple:
    values = resolve_path(document, path)
    value = values[0] if values else _MISSING
    rank = _type_rank(value)
    if rank in (1, 2, 5, 6):
        return (rank, value)
    if rank == 0:
        return (0, 0)
    return (rank, repr(value))


def normalize_sort(sort: Mapping[str, int] | Sequence[tuple[str, int]] | None) -> list[tuple[str, int]]:
    if not sort:
        return []
    items = list(sort.items()) if isinstance(sort, Mapping) else list(sort)
    normalized = []
    for field, direction in items:
        if direction not in (1, -1):
            raise DocumentValidationError(f"Sort direction for '{field}' must be 1 or -1", field)
        normalized.append((field, direction))
    return normalized


def sort_documents(
    documents: Iterable[Mapping[str, Any]],
    sort: Mapping[str, int] | Sequence[tuple[str, int]] | None,
) -> list:
    ordered = list(documents)
    for field, direction in reversed(normalize_sort(sort)):
        ordered.sort(key=lambda doc: _sort_key(doc, field), reverse=direction == -1)
    return ordered


# ─── Grouping ────────────────────────────────────────────────────

_ACCUMULATORS = frozenset({"sum", "avg", "min", "max", "count"})


def group_documents(
    documents: Iterable[Mapping[str, Any]],
    group_by: str | None,
    metrics: Mapping[str, tuple[str, str | None]],
) -> list[dict]:
    """Group documents and fold numeric accumulators.

    metrics maps an output name to (accumulator, field); `count` ignores the
    field. Non-numeric values are skipped by sum/avg/min/max.
    """
    for name, (accumulator, _) in metrics.items():
        if accumulator not in _ACCUMULATORS:
            raise DocumentValidationError(f"Unsupported accumulator '{accumulator}' for {name}", name)

    groups: dict[Any, list[Mapping[str, Any]]] = {}
    keys: dict[Any, Any] = {}
    for document in documents:
        if group_by is None:
            key = None
        else:
            values = resolve_path(document, group_by)
            key = values[0] if values else None
        marker = repr(key) if isinstance(key, (list, dict)) else key
        keys.setdefault(marker, key)
        groups.setdefault(marker, []).append(document)

    results = []
    for marker, members in groups.items():
        row: dict[str, Any] = {"group": keys[marker]}
        for name, (accumulator, field) in metrics.items():
            if accumulator == "count":
                row[name] = len(members)
                continue
            numbers = [
                value
                for member in members
                for value in resolve_path(member, field or "")
                if isinstance(value, (int, float)) and not isinstance(value, bool)
            ]
            if accumulator == "sum":
                row[name] = sum(numbers)
            elif accumulator == "avg":
                row[name] = sum(numbers) / len(numbers) if numbers else None
            elif accumulator == "min":
                row[name] = min(numbers) if numbers else None
            else:
                row[name] = max(numbers) if numbers else None
        results.append(row)
    return results
