"""Store selection for service entry points."""
import logging
import os
from typing import Optional

from .memory_store import InMemoryStore
from .store import SampleStore

logger = logging.getLogger(__name__)

_store: Optional[SampleStore] = None


def create_store_from_env() -> SampleStore:
    """Build the store named by STORE_BACKEND (memory|postgres).

    Raises:
        ValueError: If STORE_BACKEND names an unknown backend
    """
    backend = os.getenv("STORE_BACKEND", "memory").lower()

    if backend == "memory":
        store = InMemoryStore()
    elif backend == "postgres":
        from .connection import get_connection_manager
        from .postgres_store import PostgresStore

        store = PostgresStore(get_connection_manager())
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {backend}")

    logger.info("STORE_CREATED", extra={"backend": backend})
    return store


def get_store() -> SampleStore:
    """Process-wide store shared by the service handlers."""
    global _store
    if _store is None:
        _store = create_store_from_env()
    return _store


def set_store(store: SampleStore) -> None:
    """Set the process-wide store (for testing)."""
    global _store
    _store = store
