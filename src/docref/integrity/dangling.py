"""Dangling-key scanner.

Walks every declared foreign key, pages through the owning collection
and reports foreign-key values that have no matching document in the
target collection.  Read-only: nothing is repaired.

Usage:
    from docref.integrity.dangling import find_dangling_keys

    async for finding in find_dangling_keys(store, graph, batch_size=200):
        print(finding.collection, finding.path, finding.key, finding.target_collection)
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from docref.adapters.base import DocumentStore
from docref.graph.models import ForeignKeyConfig, Graph
from docref.transform import get_path_values

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DanglingKey:
    """A foreign-key value with no document in its target collection."""

    collection: str
    path: str
    key: Any
    target_collection: str


class _SeenValues:
    """Membership over foreign-key values, hashable or not.

    A foreign-key field may hold an embedded document or an array (for
    instance one stored with ``base_document=True``); those values are
    compared by equality.
    """

    def __init__(self) -> None:
        self._hashable: set = set()
        self._unhashable: list[Any] = []

    def __contains__(self, value: Any) -> bool:
        try:
            return value in self._hashable
        except TypeError:
            return value in self._unhashable

    def add(self, value: Any) -> None:
        try:
            self._hashable.add(value)
        except TypeError:
            self._unhashable.append(value)


async def _scan_foreign_key(
    store: DocumentStore,
    graph: Graph,
    collection: str,
    foreign_key: ForeignKeyConfig,
    batch_size: int,
) -> AsyncIterator[DanglingKey]:
    owner_key = graph.config(collection).key
    target_key = graph.config(foreign_key.collection).key
    query = {foreign_key.query_path: {"$exists": True}}
    reported = _SeenValues()
    skip = 0

    while True:
        page = await store.find(
            collection,
            query,
            projection=[owner_key, foreign_key.query_path],
            sort=[(owner_key, 1)],
            skip=skip,
            limit=batch_size,
        )
        if not page:
            return
        skip += len(page)

        candidates: list[Any] = []
        for document in page:
            for value in get_path_values(document, foreign_key.path):
                if value is None or value in reported or value in candidates:
                    continue
                candidates.append(value)

        if candidates:
            found = await store.find(
                foreign_key.collection,
                {target_key: {"$in": candidates}},
                projection=[target_key],
            )
            existing = [d.get(target_key) for d in found]
            for value in candidates:
                if value in existing:
                    continue
                reported.add(value)
                yield DanglingKey(
                    collection=collection,
                    path=foreign_key.path,
                    key=value,
                    target_collection=foreign_key.collection,
                )

        if len(page) < batch_size:
            return


async def find_dangling_keys(
    store: DocumentStore,
    graph: Graph,
    batch_size: int = 100,
    limit: int | None = None,
) -> AsyncIterator[DanglingKey]:
    """Yield every dangling foreign-key value, one finding per key.

    Collections are scanned in name order and foreign keys in path
    order; each page of the owning collection (``batch_size`` documents,
    sorted by key) costs one lookup in the target collection.

    Args:
        store: Document store.
        graph: Graph snapshot.
        batch_size: Documents fetched per page.
        limit: Stop after this many findings.

    Raises:
        ValueError: If ``batch_size`` is not positive.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if limit is not None and limit <= 0:
        return

    found = 0
    for collection in graph.names:
        foreign_keys = graph.config(collection).foreign_keys
        for path in sorted(foreign_keys):
            logger.debug(f"Scanning {collection}.{path}")
            async for finding in _scan_foreign_key(
                store, graph, collection, foreign_keys[path], batch_size
            ):
                yield finding
                found += 1
                if limit is not None and found >= limit:
                    return
