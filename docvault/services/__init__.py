"""Services Layer: collection repositories, unit of work, and workflow coordinator.

Invariants:
    - Workflows reach repositories only through a WorkflowUnitOfWork
    - Repositories own all document IO; services never build SQL themselves

Design Decisions:
    - One generic Repository class per collection instance, no per-collection subclasses
"""
