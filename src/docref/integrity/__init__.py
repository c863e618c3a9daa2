"""Referential-integrity engine.

Insert-time resolution of embedded foreign documents, query-time virtual
joins, cascade deletion and consistency scanning.  Every function takes
the ``DocumentStore`` and a ``Graph`` snapshot explicitly.

Usage:
    from docref.integrity import plan_deletion, execute_plan, find_dangling_keys
"""

from docref.integrity.cascade import (
    DeleteAction,
    DeletionPlan,
    DeletionResult,
    FieldAction,
    execute_plan,
    plan_deletion,
)
from docref.integrity.dangling import DanglingKey, find_dangling_keys
from docref.integrity.dependencies import (
    CompensationFailure,
    CompensationReport,
    DependencyCollector,
)
from docref.integrity.filters import find_keys, normalize_filter_query
from docref.integrity.insertion import insert_safely, normalize_insertion_doc
from docref.integrity.references import find_references

__all__ = [
    # Cascade
    "DeleteAction",
    "DeletionPlan",
    "DeletionResult",
    "FieldAction",
    "execute_plan",
    "plan_deletion",
    # Dangling keys
    "DanglingKey",
    "find_dangling_keys",
    # Dependencies
    "CompensationFailure",
    "CompensationReport",
    "DependencyCollector",
    # Resolvers
    "find_keys",
    "normalize_filter_query",
    "insert_safely",
    "normalize_insertion_doc",
    "find_references",
]
