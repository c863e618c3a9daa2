"""Query-time rewriting of filter queries ("virtual joins").

At a foreign-key path, the value of ``$in``/``$nin`` may be a filter
query against the target collection (or a list mixing keys and such
queries).  ``normalize_filter_query`` runs those foreign queries --
resolving their own foreign keys first -- and splices the matching keys
in, so the store only ever sees literal key lists.  ``$expr`` is carried
over verbatim and never interpreted.

Usage:
    from docref.integrity.filters import normalize_filter_query

    plain = await normalize_filter_query(
        store, graph, "books", {"author": {"$in": {"name": "Frank Herbert"}}}
    )
    # {"author": {"$in": [ObjectId(...)]}}
"""

from collections.abc import Mapping
from typing import Any

from docref.adapters.base import DocumentStore
from docref.errors import InvalidSelectorError
from docref.graph.models import ForeignKeyConfig, Graph
from docref.transform import (
    CONTINUE,
    PathStack,
    Replace,
    is_sequence,
    map_deep,
    stack_to_query_path,
)

MEMBERSHIP_OPERATORS = ("$in", "$nin")
PASSTHROUGH_OPERATORS = ("$expr",)


async def find_keys(
    store: DocumentStore,
    graph: Graph,
    collection: str,
    query: Mapping[str, Any],
) -> list[Any]:
    """Keys of the ``collection`` documents matching an augmented ``query``."""
    key_field = graph.config(collection).key
    plain = await normalize_filter_query(store, graph, collection, query)
    documents = await store.find(collection, plain, projection=[key_field])
    return [d[key_field] for d in documents if key_field in d]


async def normalize_filter_query(
    store: DocumentStore,
    graph: Graph,
    collection: str,
    query: Mapping[str, Any] | None,
) -> dict:
    """Turn an augmented filter query into a plain one.

    Args:
        store: Document store used to run foreign filter queries.
        graph: Graph snapshot for the whole operation.
        collection: Collection the query targets.
        query: Augmented filter query (``None`` means match everything).

    Returns:
        Plain filter query.

    Raises:
        InvalidSelectorError: If ``$in``/``$nin`` at a foreign key holds
            something other than a list or a foreign filter query.
    """
    if not query:
        return {}
    config = graph.config(collection)

    async def normalize_selector_list(foreign_key: ForeignKeyConfig, value: Any) -> list[Any]:
        if isinstance(value, Mapping):
            return await find_keys(store, graph, foreign_key.collection, value)
        if is_sequence(value):
            keys: list[Any] = []
            for item in value:
                if isinstance(item, Mapping):
                    keys.extend(await find_keys(store, graph, foreign_key.collection, item))
                else:
                    keys.append(item)
            return keys
        raise InvalidSelectorError(collection, foreign_key.path)

    async def visit(node: Mapping[str, Any], stack: PathStack, parent: Any):
        special = MEMBERSHIP_OPERATORS + PASSTHROUGH_OPERATORS
        if not any(operator in node for operator in special):
            return CONTINUE

        rest = {k: v for k, v in node.items() if k not in special}
        normalized = await map_deep(rest, visit, stack, parent)

        for operator in PASSTHROUGH_OPERATORS:
            if operator in node:
                normalized[operator] = node[operator]

        foreign_key = config.foreign_key_for_query_path(stack_to_query_path(stack))
        for operator in MEMBERSHIP_OPERATORS:
            if operator not in node:
                continue
            value = node[operator]
            if foreign_key is not None:
                value = await normalize_selector_list(foreign_key, value)
            normalized[operator] = value
        return Replace(normalized)

    return await map_deep(query, visit)
