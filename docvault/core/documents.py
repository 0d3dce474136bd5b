"""Document Helpers: identity validation, timestamp stamping, JSON body codec, projection.

Invariants:
    - normalize_id() accepts a UUID or its canonical string form, nothing else
    - Reserved fields (id, createdAt, updatedAt) never live inside the stored body
    - next_updated_at() never returns a value earlier than the previous stamp
    - encode_body() output contains only JSON types; decode_body() restores datetimes

Design Decisions:
    - Datetimes inside bodies are tagged as {"$date": iso8601} so audit entries
      (stockHistory, priceHistory, transactions) round-trip as datetime objects
    - Pure functions only: no IO, no SQLAlchemy imports
"""

import copy
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from docvault.core.domain_types import DocumentId
from docvault.core.errors import DocumentValidationError, InvalidIdentifierError

ID_FIELD = "id"
CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"
RESERVED_FIELDS = frozenset({ID_FIELD, CREATED_AT, UPDATED_AT})

_DATE_TAG = "$date"


# ─── Identity ────────────────────────────────────────────────────

def new_document_id() -> DocumentId:
    return DocumentId(str(uuid.uuid4()))


def is_valid_id(value: object) -> bool:
    """True when value is a UUID or the canonical lowercase string of one."""
    if isinstance(value, uuid.UUID):
        return True
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower() and len(value) == 36
    except ValueError:
        return False


def normalize_id(value: object) -> DocumentId:
    """Return the canonical string form or raise InvalidIdentifierError."""
    if not is_valid_id(value):
        raise InvalidIdentifierError(value)
    return DocumentId(str(uuid.UUID(str(value))))


def to_uuid(value: object) -> uuid.UUID:
    return uuid.UUID(normalize_id(value))


# ─── Timestamps ──────────────────────────────────────────────────

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_updated_at(previous: datetime | None, now: datetime | None = None) -> datetime:
    now = now or utc_now()
    if previous is None:
        return now
    return max(now, as_utc(previous))


# ─── Body Codec ──────────────────────────────────────────────────

def encode_value(value: Any, path: str = "") -> Any:
    """Convert a document value into plain JSON types."""
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise DocumentValidationError(f"Non-finite number at '{path}'", path)
        return value
    if isinstance(value, Enum):
        return encode_value(value.value, path)
    if isinstance(value, Decimal):
        return encode_value(float(value), path)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return {_DATE_TAG: as_utc(value).isoformat()}
    if isinstance(value, Mapping):
        encoded = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise DocumentValidationError(f"Field names must be strings at '{path}'", path)
            encoded[key] = encode_value(item, f"{path}.{key}" if path else key)
        return encoded
    if isinstance(value, (list, tuple)):
        return [encode_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise DocumentValidationError(
        f"Unsupported value of type {type(value).__name__} at '{path}'", path,
    )


def decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _DATE_TAG in value:
            return as_utc(datetime.fromisoformat(value[_DATE_TAG]))
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def encode_body(document: Mapping[str, Any]) -> dict:
    """Encode a document for storage, dropping the reserved fields."""
    return encode_value({k: v for k, v in document.items() if k not in RESERVED_FIELDS})


def decode_body(body: Mapping[str, Any] | None) -> dict:
    return decode_value(dict(body or {}))


def assemble_document(
    doc_id: object, body: Mapping[str, Any] | None,
    created_at: datetime, updated_at: datetime,
) -> dict:
    """Build the caller-facing document from a stored row."""
    return {
        ID_FIELD: str(doc_id),
        **decode_body(body),
        CREATED_AT: as_utc(created_at),
        UPDATED_AT: as_utc(updated_at),
    }


def check_document(document: object, what: str = "Document") -> Mapping[str, Any]:
    if not isinstance(document, Mapping):
        raise DocumentValidationError(f"{what} must be a mapping")
    for key in document:
        if isinstance(key, str) and key.startswith("$"):
            raise DocumentValidationError(f"{what} field names cannot start with '$': {key}", key)
    return document


# ─── Projection ──────────────────────────────────────────────────

def _read_path(document: Mapping[str, Any], parts: list[str]) -> tuple[bool, Any]:
    current: Any = document
    for part in parts:
        if not isinstance(current, Mapping) or part not in current:
            return False, None
        current = current[part]
    return True, current


def project(document: dict, projection: Mapping[str, Any] | None) -> dict:
    """Apply an inclusion ({"a": 1}) or exclusion ({"a": 0}) projection.

    `id` is included unless explicitly excluded. Mixing inclusion and
    exclusion of other fields is rejected.
    """
    if not projection:
        return document
    flags = {field: bool(flag) for field, flag in projection.items()}
    others = {flag for field, flag in flags.items() if field != ID_FIELD}
    if len(others) > 1:
        raise DocumentValidationError("Projection cannot mix inclusion and exclusion")

    if others == {False} or (not others and flags.get(ID_FIELD) is False):
        result = copy.deepcopy(document)
        for field, flag in flags.items():
            if flag:
                continue
            parts = field.split(".")
            parent: Any = result
            for part in parts[:-1]:
                parent = parent.get(part) if isinstance(parent, dict) else None
            if isinstance(parent, dict):
                parent.pop(parts[-1], None)
        return result

    result: dict = {}
    if flags.get(ID_FIELD, True) and ID_FIELD in document:
        result[ID_FIELD] = document[ID_FIELD]
    for field, flag in flags.items():
        if not flag or field == ID_FIELD:
            continue
        parts = field.split(".")
        found, value = _read_path(document, parts)
        if not found:
            continue
        target = result
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = copy.deepcopy(value)
    return result
