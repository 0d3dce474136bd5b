"""Core Layer: pure document, filter, update and business-rule logic. No IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, infrastructure/, or db/
    - All functions are pure and deterministic (except id and clock helpers in documents.py)

Design Decisions:
    - Functional core separated from imperative shell: repositories and workflows
      do the IO, core/ decides
"""
