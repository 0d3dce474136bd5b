"""Pydantic Schemas: input validation and result shapes for workflow calls.

Invariants:
    - Schemas validate at the coordinator boundary, before any transaction opens
    - Domain types from core/ used for enum fields

Design Decisions:
    - Separate from documents: schemas are call contracts, documents are storage
"""
