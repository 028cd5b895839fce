"""Storage adapters for moodguard services.

Provides the SampleStore contract, an in-process implementation, and a
PostgreSQL implementation with connection pooling.
"""

from .errors import (
    RepositoryError,
    NotFoundError,
    DuplicateError,
    StoreUnavailableError,
)
from .store import (
    ChangeKind,
    SampleChangeEvent,
    SampleStore,
    SubscriptionHub,
)
from .memory_store import InMemoryStore

__all__ = [
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "StoreUnavailableError",
    "ChangeKind",
    "SampleChangeEvent",
    "SampleStore",
    "SubscriptionHub",
    "InMemoryStore",
]
