"""Database handle: a document store plus the active foreign-key graph.

The graph is held behind a single attribute and replaced wholesale by
``load_schema()``.  Operations read it once when they start, so a schema
reload never changes the rules in the middle of an operation.

Usage:
    from docref import AsyncMemoryAdapter, Database

    db = Database(AsyncMemoryAdapter(), schema={
        "authors": {},
        "books": {"foreign_keys": {"author": {"collection": "authors", "on_delete": "cascade"}}},
    })
    books = db.collection("books")
"""

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from docref.adapters.base import DocumentStore
from docref.collection import Collection
from docref.graph.compiler import compile_graph
from docref.graph.models import Graph, SchemaDefinition
from docref.integrity.dangling import DanglingKey, find_dangling_keys

logger = logging.getLogger(__name__)


class Database:
    """Entry point of the integrity layer for one store."""

    def __init__(
        self,
        store: DocumentStore,
        schema: SchemaDefinition | Mapping[str, Any] | None = None,
    ) -> None:
        self.store = store
        self._graph = Graph()
        if schema is not None:
            self.load_schema(schema)

    @property
    def graph(self) -> Graph:
        """The active graph snapshot."""
        return self._graph

    def load_schema(self, schema: SchemaDefinition | Mapping[str, Any]) -> Graph:
        """Compile ``schema`` and make it the active graph.

        Raises:
            SchemaError: If the schema is inconsistent.  The previous
                graph stays active.
        """
        graph = compile_graph(schema)
        self._graph = graph
        logger.debug(f"Loaded schema with {len(graph.names)} collections")
        return graph

    def collection(self, name: str) -> Collection:
        return Collection(self, name)

    def __getitem__(self, name: str) -> Collection:
        return self.collection(name)

    async def find_dangling_keys(
        self, batch_size: int = 100, limit: int | None = None
    ) -> AsyncIterator[DanglingKey]:
        """Scan every foreign key for values without a target document."""
        async for finding in find_dangling_keys(
            self.store, self._graph, batch_size=batch_size, limit=limit
        ):
            yield finding

    async def close(self) -> None:
        await self.store.close()
