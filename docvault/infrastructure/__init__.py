"""Infrastructure Layer: document store connection management and logging.

Invariants:
    - Store calls wrapped with retry/timeout/error mapping
    - Driver exceptions never escape this layer untranslated

Design Decisions:
    - Resilient wrapper over the raw SQLAlchemy engine, injected explicitly
"""
