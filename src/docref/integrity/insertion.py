"""Insert-time resolution of embedded foreign documents.

An "augmented" insertion document may embed a whole foreign document at
a foreign-key path.  ``normalize_insertion_doc`` inserts each embedded
document into its target collection (recursively, so the target's own
foreign keys are resolved too) and replaces it with the new document's
key.  Every nested insert is recorded in the ``DependencyCollector`` so
the caller can compensate if the outer insert fails.

Errors are never caught here: the operation that owns the collector
calls ``compensate()`` and re-raises.

Usage:
    from docref.integrity.insertion import insert_safely

    dependencies = DependencyCollector(store, graph)
    book = await insert_safely(
        store, graph, "books",
        {"title": "Dune", "author": {"name": "Frank Herbert"}},
        dependencies,
    )
    # book["author"] == <key of the new authors document>
"""

import logging
from collections.abc import Mapping
from typing import Any

from docref.adapters.base import DocumentStore
from docref.errors import ValidationError
from docref.graph.models import DEFAULT_KEY, Graph
from docref.integrity.dependencies import DependencyCollector
from docref.transform import CONTINUE, PathStack, Replace, is_sequence, map_deep, stack_to_path

logger = logging.getLogger(__name__)


async def normalize_insertion_doc(
    store: DocumentStore,
    graph: Graph,
    collection: str,
    doc: Mapping[str, Any] | list[Mapping[str, Any]],
    dependencies: DependencyCollector,
) -> dict | list[dict]:
    """Turn an augmented insertion document into a plain one.

    Mapping values at foreign-key paths are inserted into the target
    collection and replaced by their key.  Bare values at foreign-key
    paths are left untouched (already a key).

    Args:
        store: Document store.
        graph: Graph snapshot for the whole operation.
        collection: Collection the document belongs to.
        doc: Augmented document, or a list of them.
        dependencies: Collector recording every nested insert.

    Returns:
        Plain document (or list of documents).
    """
    if is_sequence(doc):
        return [
            await normalize_insertion_doc(store, graph, collection, item, dependencies)
            for item in doc
        ]

    config = graph.config(collection)

    async def visit(node: Mapping[str, Any], stack: PathStack, parent: Any):
        if not stack:
            return CONTINUE
        foreign_key = config.foreign_keys.get(stack_to_path(stack))
        if foreign_key is None:
            return CONTINUE
        nested = await insert_safely(
            store, graph, foreign_key.collection, node, dependencies
        )
        return Replace(nested[graph.config(foreign_key.collection).key])

    return await map_deep(doc, visit)


def _check_key(collection: str, key_field: str, document: Mapping[str, Any]) -> None:
    # The store only generates the native identity field
    if key_field != DEFAULT_KEY and key_field not in document:
        raise ValidationError(
            f"Document for <{collection}> is missing its key field <{key_field}>",
            collection=collection,
        )


async def insert_safely(
    store: DocumentStore,
    graph: Graph,
    collection: str,
    doc: Mapping[str, Any] | list[Mapping[str, Any]],
    dependencies: DependencyCollector,
) -> dict | list[dict]:
    """Normalise and insert ``doc``, recording what was inserted.

    Lists are inserted one document at a time so that every stored
    document is recorded before the next insert can fail.

    Returns:
        The stored document (or list of stored documents).

    Raises:
        ValidationError: If the store rejects a document, or a document
            lacks a non-native key field.
    """
    normalized = await normalize_insertion_doc(store, graph, collection, doc, dependencies)
    key_field = graph.config(collection).key

    if isinstance(normalized, list):
        stored_docs = []
        for item in normalized:
            _check_key(collection, key_field, item)
            stored = await store.insert(collection, item)
            dependencies.record(collection, stored[key_field])
            stored_docs.append(stored)
        return stored_docs

    _check_key(collection, key_field, normalized)
    stored = await store.insert(collection, normalized)
    dependencies.record(collection, stored[key_field])
    logger.debug(f"Inserted {collection} {stored[key_field]!r}")
    return stored
