"""DocVault entry point: startup/shutdown lifecycle for the store and coordinator.

Invariants:
    - Logging configured before the store connects
    - Standard indexes (unique user email, unique profile userId) exist before
      the coordinator is handed out
    - The store is closed on exit, including when the body raises
    - connect() failure propagates as StoreConnectionError; nothing is left open

Design Decisions:
    - Lifespan as an async context manager, so any host (web app, worker, script)
      can wrap its own lifecycle around it
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from docvault.config import Settings, get_settings
from docvault.infrastructure.database import DocumentStore
from docvault.infrastructure.observability import setup_logging
from docvault.services.workflow_coordinator import WorkflowCoordinator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncGenerator[WorkflowCoordinator, None]:
    """Startup/shutdown lifecycle: yields a coordinator over a connected store."""
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)
    store = DocumentStore.from_settings(settings)
    try:
        await store.connect()
        coordinator = WorkflowCoordinator.from_settings(store, settings)
        await coordinator.ensure_indexes()
        logger.info("DocVault started")
        yield coordinator
    finally:
        logger.info("DocVault shutting down")
        await store.close()
