"""Virtual-join paths.

A ``Selector`` is a dotted path read across foreign keys: selecting
``"author.name"`` on a book walks into ``author``, sees that the path is
a foreign key holding a key, fetches the referenced author and continues
with ``name`` there.

Usage:
    from docref.selector import parse_selector

    selector = parse_selector("chapters.$.reviewer.name")
    names = await selector.resolve(store, graph, "books", book)
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from docref.adapters.base import DocumentStore
from docref.graph.models import Graph
from docref.transform import ARRAY_SEGMENT, is_sequence


@dataclass(frozen=True)
class Selector:
    """Immutable parsed selector.

    Segments are field names, ``$`` (every element of an array) or
    digits (one element of an array).
    """

    segments: tuple[str, ...]

    def __str__(self) -> str:
        return ".".join(self.segments)

    async def resolve(
        self,
        store: DocumentStore,
        graph: Graph,
        collection: str,
        value: Any,
    ) -> Any:
        """Resolve the selector against a document or list of documents.

        Foreign keys are dereferenced only when the walk continues past
        them, so selecting a foreign-key path itself yields the stored key.
        Missing fields and dangling keys resolve to ``None``.
        """
        if is_sequence(value):
            return list(
                await asyncio.gather(
                    *(self._walk(store, graph, collection, item, 0, ()) for item in value)
                )
            )
        return await self._walk(store, graph, collection, value, 0, ())

    async def _walk(
        self,
        store: DocumentStore,
        graph: Graph,
        collection: str,
        value: Any,
        index: int,
        path: tuple[str, ...],
    ) -> Any:
        if path and index < len(self.segments) and _is_key(value):
            foreign_key = graph.config(collection).foreign_keys.get(".".join(path))
            if foreign_key is not None:
                target_key = graph.config(foreign_key.collection).key
                value = await store.find_one(foreign_key.collection, {target_key: value})
                collection, path = foreign_key.collection, ()

        if index == len(self.segments):
            return value

        segment = self.segments[index]
        if segment == ARRAY_SEGMENT:
            if not is_sequence(value):
                return None
            return list(
                await asyncio.gather(
                    *(
                        self._walk(store, graph, collection, item, index + 1, path + (ARRAY_SEGMENT,))
                        for item in value
                    )
                )
            )
        if segment.isdigit():
            position = int(segment)
            if not is_sequence(value) or position >= len(value):
                return None
            return await self._walk(
                store, graph, collection, value[position], index + 1, path + (ARRAY_SEGMENT,)
            )
        if not isinstance(value, Mapping) or segment not in value:
            return None
        return await self._walk(
            store, graph, collection, value[segment], index + 1, path + (segment,)
        )


def _is_key(value: Any) -> bool:
    return value is not None and not isinstance(value, Mapping) and not is_sequence(value)


@lru_cache(maxsize=256)
def parse_selector(path: str) -> Selector:
    """Parse a dotted path into a ``Selector``.

    ``[]`` and ``$[]`` segments are read as ``$``.

    Raises:
        ValueError: If the path is empty or has an empty segment.
    """
    segments = path.strip().split(".")
    if not all(segments):
        raise ValueError(f"Invalid selector: {path!r}")
    return Selector(
        tuple(ARRAY_SEGMENT if s in ("[]", "$[]") else s for s in segments)
    )
