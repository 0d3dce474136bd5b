"""Collection Tables: one table per document collection, shared column layout.

Invariants:
    - Every collection table has exactly (id, body, created_at, updated_at)
    - id is the primary key; body never contains id/createdAt/updatedAt
    - Collection names are plain SQL identifiers (validated before use)

Design Decisions:
    - JSON body with a JSONB variant on PostgreSQL: indexable expressions on
      document fields, plain JSON text on SQLite for tests
    - Timestamps as real columns: createdAt/updatedAt stay queryable and typed
"""

import re

from sqlalchemy import JSON, Column, DateTime, MetaData, Table, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from docvault.core.errors import DocumentValidationError

_COLLECTION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

DocumentBody = JSON().with_variant(JSONB(), "postgresql")


def check_collection_name(name: str) -> str:
    if not isinstance(name, str) or not _COLLECTION_NAME.match(name):
        raise DocumentValidationError(f"Invalid collection name: {name!r}", "collection")
    return name


def collection_table(metadata: MetaData, name: str) -> Table:
    """Return the table for a collection, registering it on first use."""
    check_collection_name(name)
    if name in metadata.tables:
        return metadata.tables[name]
    return Table(
        name,
        metadata,
        Column("id", Uuid(as_uuid=True), primary_key=True),
        Column("body", DocumentBody, nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False),
    )
