"""Document store adapters package.

Provides the ``DocumentStore`` Protocol and concrete async adapter
implementations for MongoDB (Motor) and an in-process memory store.

Usage:
    from docref.adapters import DocumentStore, AsyncMongoAdapter, AsyncMemoryAdapter
"""

from docref.adapters.base import DocumentStore
from docref.adapters.memory import AsyncMemoryAdapter
from docref.adapters.mongo import AsyncMongoAdapter

__all__ = [
    "DocumentStore",
    "AsyncMongoAdapter",
    "AsyncMemoryAdapter",
]
