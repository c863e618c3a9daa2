"""Dependency collection and compensation for nested inserts.

An insert that embeds foreign documents inserts those documents first.
``DependencyCollector`` remembers each of them so that, if the logical
insert ultimately fails, they can be deleted again (most recent first).
Compensation is best-effort: failures are reported, never raised, so the
error that triggered compensation is the one the caller sees.

Usage:
    from docref.integrity.dependencies import DependencyCollector

    dependencies = DependencyCollector(store, graph)
    try:
        doc = await insert_safely(store, graph, "books", augmented, dependencies)
    except Exception:
        await dependencies.compensate()
        raise
"""

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from docref.adapters.base import DocumentStore
from docref.graph.models import Graph

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyRecord:
    """A document inserted as a side effect of a logical insert."""

    collection: str
    key: Any


class CompensationFailure(BaseModel):
    """A dependency that could not be deleted during compensation."""

    collection: str
    key: Any
    error: str


class CompensationReport(BaseModel):
    """Outcome of ``DependencyCollector.compensate()``.

    Attributes:
        deleted: Number of dependencies deleted.
        missing: Number of dependencies already gone.
        failures: Dependencies whose deletion raised.
    """

    deleted: int = 0
    missing: int = 0
    failures: list[CompensationFailure] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


class DependencyCollector:
    """Tracks documents inserted during one logical insert.

    The caller owns the lifecycle: ``compensate()`` is invoked once by
    the operation that created the collector, on its failure path.
    """

    def __init__(self, store: DocumentStore, graph: Graph) -> None:
        self._store = store
        self._graph = graph
        self._records: list[DependencyRecord] = []

    @property
    def records(self) -> list[DependencyRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def record(self, collection: str, key: Any) -> None:
        """Remember a document inserted into ``collection`` under ``key``."""
        self._records.append(DependencyRecord(collection=collection, key=key))

    async def compensate(self) -> CompensationReport:
        """Delete every recorded document, most recent first.

        Returns:
            ``CompensationReport``; never raises for deletion failures.
        """
        report = CompensationReport()
        while self._records:
            record = self._records.pop()
            key_field = self._graph.config(record.collection).key
            try:
                deleted = await self._store.delete(
                    record.collection, {key_field: record.key}, single=True
                )
            except Exception as e:
                logger.warning(f"Compensation failed for {record.collection} {record.key!r}: {e}")
                report.failures.append(
                    CompensationFailure(
                        collection=record.collection, key=record.key, error=str(e)
                    )
                )
                continue
            if deleted:
                report.deleted += 1
            else:
                report.missing += 1
        logger.debug(
            f"Compensation done: {report.deleted} deleted, {report.missing} missing, "
            f"{len(report.failures)} failed"
        )
        return report
