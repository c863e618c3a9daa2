"""Cascade-delete planning and execution.

Deleting documents that other collections reference is done in two
phases:

1. ``plan_deletion()`` reads only.  It resolves the base deletion to
   concrete keys, walks the Reference Index and applies each referencing
   foreign key's delete policy, producing a ``DeletionPlan``.  Any
   ``reject`` foreign key that still has referents aborts the plan with
   ``ReferentialIntegrityViolation`` before anything is mutated.
2. ``execute_plan()`` writes only.  It applies the planned actions in
   order (deepest cascades first) and deletes the base documents last.

There is no transaction around the two phases: a concurrent writer can
add a reference after planning, and a failure during execution leaves
the already-applied actions in place.

Usage:
    from docref.integrity.cascade import execute_plan, plan_deletion

    plan = await plan_deletion(store, graph, "authors", {"_id": author_id}, single=True)
    result = await execute_plan(store, plan)
    print(result.deleted_count, result.cascaded)
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, assert_never

from pydantic import BaseModel, Field

from docref.adapters.base import DocumentStore
from docref.errors import ReferentialIntegrityViolation
from docref.graph.models import DeletePolicy, Graph
from docref.transform import ARRAY_SEGMENT, get_path_values, split_path, to_query_path

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Plan data classes
# ------------------------------------------------------------------


@dataclass
class DeleteAction:
    """Delete every document of ``collection`` whose key is in ``keys``.

    Example:
        action = DeleteAction(collection="books", key_field="_id", keys=[1, 2])
        action.to_query()
        # {'_id': {'$in': [1, 2]}}
    """

    collection: str
    key_field: str
    keys: list[Any]

    def to_query(self) -> dict[str, Any]:
        return {self.key_field: {"$in": list(self.keys)}}

    async def apply(self, store: DocumentStore) -> int:
        return await store.delete(self.collection, self.to_query())


@dataclass
class FieldAction:
    """Clear a foreign-key field that holds one of ``keys``.

    ``policy`` is one of ``unset``, ``nullify`` or ``pull``.

    Example:
        action = FieldAction("shelves", "books.$", DeletePolicy.PULL, [1])
        action.to_update()
        # {'$pull': {'books': {'$in': [1]}}}
    """

    collection: str
    path: str
    policy: DeletePolicy
    keys: list[Any]

    def to_query(self) -> dict[str, Any]:
        return {to_query_path(self.path): {"$in": list(self.keys)}}

    def to_update(self) -> dict[str, Any]:
        if self.policy == DeletePolicy.UNSET:
            return {"$unset": {self.path: ""}}
        if self.policy == DeletePolicy.NULLIFY:
            return {"$set": {self.path: None}}
        if self.policy == DeletePolicy.PULL:
            # Outer arrays are traversed with the all-positional operator
            segments = ["$[]" if s == ARRAY_SEGMENT else s for s in split_path(self.path)[:-1]]
            return {"$pull": {".".join(segments): {"$in": list(self.keys)}}}
        raise ValueError(f"No field update for onDelete={self.policy.value}")

    async def apply(self, store: DocumentStore) -> int:
        return await store.update(self.collection, self.to_query(), self.to_update(), multi=True)


PlannedAction = DeleteAction | FieldAction


@dataclass
class DeletionPlan:
    """Everything a deletion will do, decided before any mutation.

    Attributes:
        collection: Base collection.
        key_field: Key field of the base collection.
        base_keys: Keys of the base documents, deleted last.
        actions: Scheduled actions, in execution order.
        visited: Per collection, keys whose references were walked.
        scheduled: Per collection, keys scheduled for deletion.
    """

    collection: str
    key_field: str
    base_keys: list[Any] = field(default_factory=list)
    actions: list[PlannedAction] = field(default_factory=list)
    visited: dict[str, set] = field(default_factory=dict)
    scheduled: dict[str, set] = field(default_factory=dict)

    def schedule(self, collection: str, keys: Iterable[Any]) -> list[Any]:
        """Mark keys for deletion; return the ones not already scheduled."""
        seen = self.scheduled.setdefault(collection, set())
        fresh = []
        for key in keys:
            if key not in seen:
                seen.add(key)
                fresh.append(key)
        return fresh

    def visit(self, collection: str, keys: Iterable[Any]) -> list[Any]:
        """Mark keys as walked; return the ones not walked before."""
        seen = self.visited.setdefault(collection, set())
        fresh = []
        for key in keys:
            if key not in seen:
                seen.add(key)
                fresh.append(key)
        return fresh

    def base_query(self) -> dict[str, Any]:
        return {self.key_field: {"$in": list(self.base_keys)}}

    @property
    def action_count(self) -> int:
        return len(self.actions)


class DeletionResult(BaseModel):
    """Result of executing a ``DeletionPlan``.

    Attributes:
        deleted_count: Base documents deleted.
        cascaded: Per collection, documents deleted by cascades.
        updated: Per collection, documents whose foreign key was cleared.
    """

    deleted_count: int = 0
    cascaded: dict[str, int] = Field(default_factory=dict)
    updated: dict[str, int] = Field(default_factory=dict)


# ------------------------------------------------------------------
# Plan generation
# ------------------------------------------------------------------


async def _propagate(
    store: DocumentStore,
    graph: Graph,
    plan: DeletionPlan,
    collection: str,
    keys: list[Any],
) -> None:
    """Apply every incoming reference's policy to the deletion of ``keys``."""
    keys = plan.visit(collection, keys)
    if not keys:
        return

    # References are sorted by (collection, path) at compile time
    for reference in graph.config(collection).references:
        policy = reference.on_delete
        if policy == DeletePolicy.BYPASS:
            continue
        elif policy == DeletePolicy.REJECT:
            await _reject_if_referenced(
                store, reference.collection, reference.path, collection, keys
            )
        elif policy == DeletePolicy.CASCADE:
            ref_key = graph.config(reference.collection).key
            documents = await store.find(
                reference.collection,
                {reference.query_path: {"$in": keys}},
                projection=[ref_key],
            )
            cascaded = plan.schedule(reference.collection, [d[ref_key] for d in documents])
            if not cascaded:
                continue
            logger.debug(
                f"Cascade {collection} -> {reference.collection}.{reference.path}: "
                f"{len(cascaded)} documents"
            )
            await _propagate(store, graph, plan, reference.collection, cascaded)
            plan.actions.append(
                DeleteAction(collection=reference.collection, key_field=ref_key, keys=cascaded)
            )
        elif policy in (DeletePolicy.UNSET, DeletePolicy.NULLIFY, DeletePolicy.PULL):
            plan.actions.append(
                FieldAction(
                    collection=reference.collection,
                    path=reference.path,
                    policy=policy,
                    keys=keys,
                )
            )
        else:
            assert_never(policy)


async def _reject_if_referenced(
    store: DocumentStore,
    collection: str,
    path: str,
    target: str,
    keys: list[Any],
) -> None:
    """Raise if any document of ``collection`` still points at ``keys`` through ``path``."""
    referent = await store.find_one(collection, {to_query_path(path): {"$in": keys}})
    if referent is None:
        return
    offending = next((v for v in get_path_values(referent, path) if v in keys), keys[0])
    raise ReferentialIntegrityViolation(
        collection=collection,
        path=path,
        key=offending,
        target=target,
    )


async def plan_deletion(
    store: DocumentStore,
    graph: Graph,
    collection: str,
    query: dict[str, Any],
    single: bool = False,
    propagate: bool = True,
) -> DeletionPlan:
    """Plan the deletion of the documents matching ``query``.

    Read-only.  The walk is exhaustive: every referencing collection is
    visited, each key is walked at most once per collection (cycles in
    the reference graph terminate), and a document reachable through
    two paths is scheduled once.

    Args:
        store: Document store.
        graph: Graph snapshot for the whole operation.
        collection: Base collection.
        query: Plain filter query selecting the base documents.
        single: Only the first matching document is deleted.
        propagate: When ``False``, plan the base deletion only.

    Returns:
        ``DeletionPlan`` ready for ``execute_plan()``.

    Raises:
        ReferentialIntegrityViolation: If a ``reject`` foreign key still
            references a document the plan would delete.
    """
    key_field = graph.config(collection).key
    documents = await store.find(
        collection, query, projection=[key_field], limit=1 if single else 0
    )
    plan = DeletionPlan(collection=collection, key_field=key_field)
    plan.base_keys = plan.schedule(collection, [d[key_field] for d in documents if key_field in d])

    if propagate and plan.base_keys:
        await _propagate(store, graph, plan, collection, plan.base_keys)

    logger.debug(
        f"Planned deletion of {len(plan.base_keys)} {collection} documents "
        f"with {plan.action_count} dependent actions"
    )
    return plan


# ------------------------------------------------------------------
# Plan execution
# ------------------------------------------------------------------


async def execute_plan(store: DocumentStore, plan: DeletionPlan) -> DeletionResult:
    """Apply a ``DeletionPlan``.

    Actions run sequentially in plan order, then the base documents are
    deleted.  A failure propagates as-is; actions already applied are not
    rolled back.

    Returns:
        ``DeletionResult`` with per-collection counts.
    """
    result = DeletionResult()

    for action in plan.actions:
        count = await action.apply(store)
        counts = result.cascaded if isinstance(action, DeleteAction) else result.updated
        counts[action.collection] = counts.get(action.collection, 0) + count

    if plan.base_keys:
        result.deleted_count = await store.delete(plan.collection, plan.base_query())

    logger.debug(
        f"Deleted {result.deleted_count} {plan.collection} documents "
        f"(cascaded={result.cascaded}, updated={result.updated})"
    )
    return result
