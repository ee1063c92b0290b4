"""Persistence backends. The backend is picked once, by create_store()."""

import logging

from homeplan.lib.config import HomeplanConfig
from homeplan.store.base import NotFoundError, Store, StoreError
from homeplan.store.files import FileStore
from homeplan.store.memory import MemoryStore

logger = logging.getLogger(__name__)

__all__ = ["Store", "StoreError", "NotFoundError", "FileStore", "MemoryStore", "create_store"]


def create_store(config: HomeplanConfig) -> Store:
    """Build the configured persistence backend."""
    if config.store_backend == "memory":
        logger.debug("[STORE] Using in-memory store")
        return MemoryStore()
    logger.debug(f"[STORE] Using file store at {config.state_dir}")
    return FileStore(config.state_dir)
