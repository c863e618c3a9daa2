"""Incoming-reference lookup.

``find_references`` follows the Reference Index of a collection and
returns, per referencing collection, the documents whose foreign key
holds one of the given keys.
"""

from typing import Any

from docref.adapters.base import DocumentStore
from docref.graph.models import Graph


async def find_references(
    store: DocumentStore,
    graph: Graph,
    collection: str,
    keys: list[Any],
    keys_only: bool = False,
) -> dict[str, list[Any]]:
    """Documents (or their keys) referencing any of ``keys``.

    Returns:
        Mapping of referencing collection name to matching documents;
        collections without referents are omitted.  A document that
        references through two paths is listed once.
    """
    if not keys:
        return {}

    found: dict[str, list[Any]] = {}
    seen: dict[str, set] = {}
    for reference in graph.config(collection).references:
        ref_key = graph.config(reference.collection).key
        documents = await store.find(
            reference.collection,
            {reference.query_path: {"$in": list(keys)}},
            projection=[ref_key] if keys_only else None,
        )
        for document in documents:
            key = document.get(ref_key)
            if key in seen.setdefault(reference.collection, set()):
                continue
            seen[reference.collection].add(key)
            found.setdefault(reference.collection, []).append(key if keys_only else document)
    return found
